"""Date-owned plan entries: lazy materialization from templates, overrides and ad hoc edits.

A CalendarEntry holds a value copy of one template day. Once created its
content is never re-read from the template; it only changes through
`apply_override`, which every editing helper in this module is built on.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from db.models import CalendarEntry, CalendarItem, CalendarSession, WeekTemplate
from services.errors import NotFoundError, PlanValidationError
from services.template_service import find_template_day, parse_order
from utils.datetime_utils import iter_dates
from utils.plan_fields import (
    ALL_PLANNED_FIELDS,
    coerce_date,
    coerce_planned_fields,
    normalize_domain,
    planned_fields_dict,
)


logger = logging.getLogger(__name__)


def resolve_entry(db: Session, subject_id: int, domain: str, on_date: date | str) -> CalendarEntry | None:
    """Return the entry for the date, or None when it has not been materialized."""
    domain = normalize_domain(domain)
    on_date = coerce_date(on_date)
    return (
        db.query(CalendarEntry)
        .filter(
            CalendarEntry.subject_id == subject_id,
            CalendarEntry.domain == domain,
            CalendarEntry.entry_date == on_date.isoformat(),
        )
        .first()
    )


def _select_template(db: Session, subject_id: int, domain: str, template_id: int | None) -> WeekTemplate:
    if template_id is not None:
        template = db.query(WeekTemplate).filter(WeekTemplate.id == template_id).first()
        if template is None or template.owner_id != subject_id or template.domain != domain:
            raise NotFoundError(f"Week template {template_id} not found")
        if not template.is_active:
            raise PlanValidationError(f"Week template {template_id} is inactive", field="template_id")
        return template

    template = (
        db.query(WeekTemplate)
        .filter(
            WeekTemplate.owner_id == subject_id,
            WeekTemplate.domain == domain,
            WeekTemplate.is_active.is_(True),
        )
        .order_by(WeekTemplate.created_at.desc(), WeekTemplate.id.desc())
        .first()
    )
    if template is None:
        raise NotFoundError(f"No active {domain} template for subject {subject_id}")
    return template


def _copy_template_day(entry: CalendarEntry, template: WeekTemplate, on_date: date) -> None:
    day = find_template_day(template, on_date.weekday())
    entry.week_template_id = template.id
    if day is None:
        entry.template_day_id = None
        entry.is_rest_day = True
        return

    entry.template_day_id = day.id
    entry.is_rest_day = bool(day.is_rest_day)
    if day.notes and not entry.notes:
        entry.notes = day.notes
    for t_session in sorted(day.sessions, key=lambda s: (s.session_order, s.id)):
        session = CalendarSession(
            name=t_session.name,
            session_order=t_session.session_order,
            notes=t_session.notes,
            week_template_id=template.id,
        )
        for t_item in sorted(t_session.items, key=lambda i: (i.item_order, i.id)):
            session.items.append(
                CalendarItem(
                    name=t_item.name,
                    library_id=t_item.library_id,
                    item_order=t_item.item_order,
                    **{field: getattr(t_item, field) for field in ALL_PLANNED_FIELDS},
                )
            )
        entry.sessions.append(session)


def materialize_from_template(
    db: Session,
    subject_id: int,
    domain: str,
    on_date: date | str,
    template_id: int | None = None,
) -> CalendarEntry:
    """Return the entry for the date, creating it from a template on first use.

    An existing entry is returned unchanged, whatever the template now says.
    When two requests race to create the same date the loser rolls back and
    returns the winner's row.
    """
    domain = normalize_domain(domain)
    on_date = coerce_date(on_date)
    existing = resolve_entry(db, subject_id, domain, on_date)
    if existing is not None:
        return existing

    template = _select_template(db, subject_id, domain, template_id)
    entry = CalendarEntry(
        subject_id=subject_id,
        domain=domain,
        entry_date=on_date.isoformat(),
        is_override=False,
    )
    _copy_template_day(entry, template, on_date)
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = resolve_entry(db, subject_id, domain, on_date)
        if winner is None:
            raise
        logger.warning(
            "Concurrent materialization for subject %s %s %s; using entry %s",
            subject_id, domain, on_date.isoformat(), winner.id,
        )
        return winner

    db.refresh(entry)
    logger.info(
        "Materialized %s entry %s for subject %s on %s from template %s",
        domain, entry.id, subject_id, entry.entry_date, template.id,
    )
    return entry


def _build_override_sessions(
    domain: str,
    sessions_payload: list[dict[str, Any]],
    owned_sessions: dict[int, CalendarSession],
    owned_items: dict[int, CalendarItem],
) -> list[CalendarSession]:
    built: list[CalendarSession] = []
    used_session_ids: set[int] = set()
    used_item_ids: set[int] = set()
    for s_idx, s_payload in enumerate(sessions_payload or []):
        name = str(s_payload.get("name") or "").strip()
        if not name:
            raise PlanValidationError("Session name is required", field="sessions.name")
        previous = owned_sessions.get(s_payload.get("id"))
        session = CalendarSession(
            name=name,
            session_order=parse_order(s_payload.get("session_order"), s_idx, "session_order"),
            notes=s_payload.get("notes") or None,
            week_template_id=previous.week_template_id if previous is not None else None,
        )
        if previous is not None and previous.id not in used_session_ids:
            session.id = previous.id
            used_session_ids.add(previous.id)

        for i_idx, i_payload in enumerate(s_payload.get("items") or []):
            item_name = str(i_payload.get("name") or "").strip()
            if not item_name:
                raise PlanValidationError("Item name is required", field="items.name")
            item = CalendarItem(
                name=item_name,
                library_id=i_payload.get("library_id"),
                item_order=parse_order(i_payload.get("item_order"), i_idx, "item_order"),
                **coerce_planned_fields(domain, i_payload),
            )
            item_id = i_payload.get("id")
            # An item moved to another session gets a new id.
            kept = owned_items.get(item_id)
            if (
                kept is not None
                and session.id is not None
                and kept.calendar_session_id == session.id
                and item_id not in used_item_ids
            ):
                item.id = item_id
                used_item_ids.add(item_id)
            session.items.append(item)
        built.append(session)
    return built


def apply_override(
    db: Session,
    subject_id: int,
    domain: str,
    on_date: date | str,
    sessions: list[dict[str, Any]],
    notes: str | None = None,
    is_rest_day: bool | None = None,
) -> CalendarEntry:
    """Replace the whole session list of a date and mark it overridden.

    Sessions and items that carry the id of a row this entry already owns keep
    that id, so tracking records written against them stay attached. Items
    keep theirs only while they stay in the same session.
    """
    domain = normalize_domain(domain)
    on_date = coerce_date(on_date)

    entry = resolve_entry(db, subject_id, domain, on_date)
    owned_sessions: dict[int, CalendarSession] = {}
    owned_items: dict[int, CalendarItem] = {}
    if entry is not None:
        for session in entry.sessions:
            owned_sessions[session.id] = session
            for item in session.items:
                owned_items[item.id] = item

    new_sessions = _build_override_sessions(domain, sessions, owned_sessions, owned_items)

    if entry is None:
        entry = CalendarEntry(subject_id=subject_id, domain=domain, entry_date=on_date.isoformat())
        db.add(entry)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            entry = resolve_entry(db, subject_id, domain, on_date)
            if entry is None:
                raise
            logger.warning("Concurrent override insert for %s %s; reusing entry %s", domain, on_date, entry.id)

    # Old rows must be deleted before replacements reuse their ids.
    entry.sessions.clear()
    db.flush()
    entry.sessions.extend(new_sessions)

    entry.is_override = True
    if notes is not None:
        entry.notes = notes or None
    if is_rest_day is not None:
        entry.is_rest_day = bool(is_rest_day)
    elif new_sessions:
        entry.is_rest_day = False
    db.flush()
    logger.info(
        "Override applied to %s entry %s for subject %s on %s (%d sessions)",
        domain, entry.id, subject_id, entry.entry_date, len(new_sessions),
    )
    return entry


def entry_sessions_payload(entry: CalendarEntry | None) -> list[dict[str, Any]]:
    """Current session list in the shape apply_override accepts, ids included."""
    if entry is None:
        return []
    return entry_to_dict(entry)["sessions"]


def _current_entry(db: Session, subject_id: int, domain: str, on_date: date) -> CalendarEntry | None:
    entry = resolve_entry(db, subject_id, domain, on_date)
    if entry is not None:
        return entry
    try:
        return materialize_from_template(db, subject_id, domain, on_date)
    except NotFoundError:
        return None


def add_session(
    db: Session,
    subject_id: int,
    domain: str,
    on_date: date | str,
    session: dict[str, Any],
) -> CalendarEntry:
    domain = normalize_domain(domain)
    on_date = coerce_date(on_date)
    entry = _current_entry(db, subject_id, domain, on_date)
    sessions = entry_sessions_payload(entry)
    new_session = {key: value for key, value in session.items() if key != "id"}
    new_session.setdefault("session_order", max((s["session_order"] for s in sessions), default=-1) + 1)
    sessions.append(new_session)
    return apply_override(db, subject_id, domain, on_date, sessions)


def remove_session(
    db: Session,
    subject_id: int,
    domain: str,
    on_date: date | str,
    session_id: int,
) -> CalendarEntry:
    domain = normalize_domain(domain)
    on_date = coerce_date(on_date)
    entry = resolve_entry(db, subject_id, domain, on_date)
    sessions = entry_sessions_payload(entry)
    remaining = [s for s in sessions if s["id"] != session_id]
    if entry is None or len(remaining) == len(sessions):
        raise NotFoundError(f"Session {session_id} not found on {on_date.isoformat()}")
    return apply_override(db, subject_id, domain, on_date, remaining)


def add_item(
    db: Session,
    subject_id: int,
    domain: str,
    on_date: date | str,
    session_id: int,
    item: dict[str, Any],
) -> CalendarEntry:
    domain = normalize_domain(domain)
    on_date = coerce_date(on_date)
    entry = resolve_entry(db, subject_id, domain, on_date)
    sessions = entry_sessions_payload(entry)
    target = next((s for s in sessions if s["id"] == session_id), None)
    if target is None:
        raise NotFoundError(f"Session {session_id} not found on {on_date.isoformat()}")
    new_item = {key: value for key, value in item.items() if key != "id"}
    new_item.setdefault("item_order", max((i["item_order"] for i in target["items"]), default=-1) + 1)
    target["items"].append(new_item)
    return apply_override(db, subject_id, domain, on_date, sessions)


def remove_item(
    db: Session,
    subject_id: int,
    domain: str,
    on_date: date | str,
    item_id: int,
) -> CalendarEntry:
    domain = normalize_domain(domain)
    on_date = coerce_date(on_date)
    entry = resolve_entry(db, subject_id, domain, on_date)
    sessions = entry_sessions_payload(entry)
    found = False
    for s in sessions:
        kept = [i for i in s["items"] if i["id"] != item_id]
        if len(kept) != len(s["items"]):
            s["items"] = kept
            found = True
    if not found:
        raise NotFoundError(f"Item {item_id} not found on {on_date.isoformat()}")
    return apply_override(db, subject_id, domain, on_date, sessions)


def _check_range(start: date, end: date) -> None:
    if end < start:
        raise PlanValidationError("end must not be before start", field="end")
    days = (end - start).days + 1
    if days > settings.CALENDAR_MAX_RANGE_DAYS:
        raise PlanValidationError(
            f"Date range is limited to {settings.CALENDAR_MAX_RANGE_DAYS} days",
            field="end",
        )


def list_entries(
    db: Session,
    subject_id: int,
    domain: str,
    start: date | str,
    end: date | str,
) -> list[CalendarEntry]:
    domain = normalize_domain(domain)
    start = coerce_date(start, "start")
    end = coerce_date(end, "end")
    _check_range(start, end)
    return (
        db.query(CalendarEntry)
        .filter(
            CalendarEntry.subject_id == subject_id,
            CalendarEntry.domain == domain,
            CalendarEntry.entry_date >= start.isoformat(),
            CalendarEntry.entry_date <= end.isoformat(),
        )
        .order_by(CalendarEntry.entry_date.asc())
        .all()
    )


def apply_template_range(
    db: Session,
    subject_id: int,
    domain: str,
    start: date | str,
    end: date | str,
    template_id: int | None = None,
    refresh: bool = False,
) -> dict[str, Any]:
    """Materialize every date in the range from one template.

    With refresh, dates already copied from the same template are re-copied
    from its current days. Overridden dates are never touched.
    """
    domain = normalize_domain(domain)
    start = coerce_date(start, "start")
    end = coerce_date(end, "end")
    _check_range(start, end)
    template = _select_template(db, subject_id, domain, template_id)

    result: dict[str, list[str]] = {"created": [], "refreshed": [], "skipped_override": [], "unchanged": []}
    for day in iter_dates(start, end):
        iso = day.isoformat()
        entry = resolve_entry(db, subject_id, domain, day)
        if entry is None:
            materialize_from_template(db, subject_id, domain, day, template_id=template.id)
            result["created"].append(iso)
        elif entry.is_override:
            result["skipped_override"].append(iso)
        elif refresh and entry.week_template_id == template.id:
            entry.sessions.clear()
            db.flush()
            entry.notes = None
            _copy_template_day(entry, template, day)
            db.flush()
            result["refreshed"].append(iso)
        else:
            result["unchanged"].append(iso)

    logger.info(
        "Applied %s template %s to %s..%s for subject %s: %d created, %d refreshed, %d overridden kept",
        domain, template.id, start.isoformat(), end.isoformat(), subject_id,
        len(result["created"]), len(result["refreshed"]), len(result["skipped_override"]),
    )
    return {"template_id": template.id, "start": start.isoformat(), "end": end.isoformat(), **result}


def entry_to_dict(entry: CalendarEntry) -> dict[str, Any]:
    sessions = sorted(entry.sessions, key=lambda s: (s.session_order, s.id or 0))
    return {
        "id": entry.id,
        "subject_id": entry.subject_id,
        "domain": entry.domain,
        "entry_date": entry.entry_date,
        "week_template_id": entry.week_template_id,
        "template_day_id": entry.template_day_id,
        "is_override": bool(entry.is_override),
        "is_rest_day": bool(entry.is_rest_day),
        "notes": entry.notes,
        "sessions": [
            {
                "id": session.id,
                "name": session.name,
                "session_order": session.session_order,
                "notes": session.notes,
                "week_template_id": session.week_template_id,
                "items": [
                    {
                        "id": item.id,
                        "name": item.name,
                        "library_id": item.library_id,
                        "item_order": item.item_order,
                        **planned_fields_dict(item, entry.domain),
                    }
                    for item in sorted(session.items, key=lambda i: (i.item_order, i.id or 0))
                ],
            }
            for session in sessions
        ],
    }
