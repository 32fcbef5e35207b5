from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import TemplateDay, TemplateItem, TemplateSession, WeekTemplate
from services.errors import ConflictError, NotFoundError, PlanValidationError
from services.library_service import resolve_library_defaults
from utils.plan_fields import coerce_planned_fields, normalize_domain, planned_fields_dict, planned_fields_for


logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _parse_day_of_week(value: Any) -> int:
    if isinstance(value, str):
        key = value.strip().lower()
        for idx, name in enumerate(WEEKDAY_NAMES):
            if key in (name, name[:3]):
                return idx
        if key.isdigit():
            value = int(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise PlanValidationError("day_of_week must be 0 (Monday) through 6 (Sunday)", field="day_of_week")
    if not 0 <= value <= 6:
        raise PlanValidationError("day_of_week must be 0 (Monday) through 6 (Sunday)", field="day_of_week")
    return value


def parse_order(raw: Any, default: int, field: str) -> int:
    if raw is None:
        return default
    if isinstance(raw, bool):
        raise PlanValidationError(f"{field} must be a whole number", field=field)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise PlanValidationError(f"{field} must be a whole number", field=field) from None


def _build_item(db: Session, owner_id: int, domain: str, payload: dict[str, Any], index: int) -> TemplateItem:
    library = resolve_library_defaults(db, owner_id, domain, payload.get("library_id"))
    name = str(payload.get("name") or "").strip()
    if not name and library is not None:
        name = library.name
    if not name:
        raise PlanValidationError("Item name is required", field="items.name")

    planned = coerce_planned_fields(domain, payload)
    if library is not None:
        # Copy library defaults for anything the item leaves blank.
        for field in planned_fields_for(domain):
            if planned.get(field) is None:
                planned[field] = getattr(library, field)

    return TemplateItem(
        name=name,
        library_id=library.id if library is not None else None,
        item_order=parse_order(payload.get("item_order"), index, "item_order"),
        **planned,
    )


def _build_session(db: Session, owner_id: int, domain: str, payload: dict[str, Any], index: int) -> TemplateSession:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise PlanValidationError("Session name is required", field="sessions.name")
    session = TemplateSession(
        name=name,
        session_order=parse_order(payload.get("session_order"), index, "session_order"),
        notes=payload.get("notes") or None,
    )
    for idx, item_payload in enumerate(payload.get("items") or []):
        session.items.append(_build_item(db, owner_id, domain, item_payload, idx))
    return session


def _build_day(db: Session, owner_id: int, domain: str, payload: dict[str, Any]) -> TemplateDay:
    day = TemplateDay(
        day_of_week=_parse_day_of_week(payload.get("day_of_week")),
        is_rest_day=bool(payload.get("is_rest_day", False)),
        notes=payload.get("notes") or None,
    )
    for idx, session_payload in enumerate(payload.get("sessions") or []):
        day.sessions.append(_build_session(db, owner_id, domain, session_payload, idx))
    return day


def _build_days(db: Session, owner_id: int, domain: str, days_payload: list[dict[str, Any]]) -> list[TemplateDay]:
    days: list[TemplateDay] = []
    seen: set[int] = set()
    for day_payload in days_payload or []:
        day = _build_day(db, owner_id, domain, day_payload)
        if day.day_of_week in seen:
            raise ConflictError(
                f"day_of_week {day.day_of_week} appears more than once",
                field="day_of_week",
            )
        seen.add(day.day_of_week)
        days.append(day)
    return days


def _require_name(payload: dict[str, Any]) -> str:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise PlanValidationError("Template name is required", field="name")
    return name


def create_template(db: Session, owner_id: int, domain: str, payload: dict[str, Any]) -> WeekTemplate:
    domain = normalize_domain(domain)
    name = _require_name(payload)
    days = _build_days(db, owner_id, domain, payload.get("days") or [])

    template = WeekTemplate(
        owner_id=owner_id,
        domain=domain,
        name=name,
        description=payload.get("description") or None,
        is_active=bool(payload.get("is_active", True)),
    )
    template.days.extend(days)
    db.add(template)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Duplicate day_of_week in template", field="day_of_week") from None
    logger.info("Created %s template %s with %d days", domain, template.id, len(days))
    return template


def get_template(db: Session, template_id: int, owner_id: int | None = None) -> WeekTemplate:
    template = db.query(WeekTemplate).filter(WeekTemplate.id == template_id).first()
    if template is None or (owner_id is not None and template.owner_id != owner_id):
        raise NotFoundError(f"Week template {template_id} not found")
    return template


def list_templates(db: Session, owner_id: int, domain: str, active_only: bool = True) -> list[WeekTemplate]:
    domain = normalize_domain(domain)
    q = db.query(WeekTemplate).filter(WeekTemplate.owner_id == owner_id, WeekTemplate.domain == domain)
    if active_only:
        q = q.filter(WeekTemplate.is_active.is_(True))
    return q.order_by(WeekTemplate.created_at.desc(), WeekTemplate.id.desc()).all()


def update_template(
    db: Session,
    template_id: int,
    payload: dict[str, Any],
    owner_id: int | None = None,
) -> WeekTemplate:
    template = get_template(db, template_id, owner_id=owner_id)
    if "name" in payload:
        template.name = _require_name(payload)
    if "description" in payload:
        template.description = payload.get("description") or None
    if "is_active" in payload and payload["is_active"] is not None:
        template.is_active = bool(payload["is_active"])

    if payload.get("days") is not None:
        days = _build_days(db, template.owner_id, template.domain, payload["days"])
        # Old rows must be gone before the replacements hit the weekday index.
        template.days.clear()
        db.flush()
        template.days.extend(days)
        logger.info("Replaced days of template %s (%d days)", template.id, len(days))

    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Duplicate day_of_week in template", field="day_of_week") from None
    return template


def deactivate_template(db: Session, template_id: int, owner_id: int | None = None) -> WeekTemplate:
    template = get_template(db, template_id, owner_id=owner_id)
    template.is_active = False
    db.flush()
    logger.info("Template %s deactivated", template.id)
    return template


def add_template_day(
    db: Session,
    template_id: int,
    day_payload: dict[str, Any],
    owner_id: int | None = None,
) -> TemplateDay:
    template = get_template(db, template_id, owner_id=owner_id)
    day = _build_day(db, template.owner_id, template.domain, day_payload)
    if any(existing.day_of_week == day.day_of_week for existing in template.days):
        raise ConflictError(
            f"Template {template.id} already has a day for day_of_week {day.day_of_week}",
            field="day_of_week",
        )
    template.days.append(day)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.warning("Duplicate weekday insert rejected for template %s", template_id)
        raise ConflictError(
            f"Template {template_id} already has a day for day_of_week {day.day_of_week}",
            field="day_of_week",
        ) from None
    return day


def find_template_day(template: WeekTemplate, day_of_week: int) -> TemplateDay | None:
    for day in template.days:
        if day.day_of_week == day_of_week:
            return day
    return None


def template_item_to_dict(item: TemplateItem, domain: str) -> dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "library_id": item.library_id,
        "item_order": item.item_order,
        **planned_fields_dict(item, domain),
    }


def template_to_dict(template: WeekTemplate) -> dict[str, Any]:
    return {
        "id": template.id,
        "domain": template.domain,
        "name": template.name,
        "description": template.description,
        "is_active": bool(template.is_active),
        "created_at": template.created_at.isoformat() if template.created_at else None,
        "updated_at": template.updated_at.isoformat() if template.updated_at else None,
        "days": [
            {
                "id": day.id,
                "day_of_week": day.day_of_week,
                "is_rest_day": bool(day.is_rest_day),
                "notes": day.notes,
                "sessions": [
                    {
                        "id": session.id,
                        "name": session.name,
                        "session_order": session.session_order,
                        "notes": session.notes,
                        "items": [template_item_to_dict(item, template.domain) for item in session.items],
                    }
                    for session in day.sessions
                ],
            }
            for day in template.days
        ],
    }
