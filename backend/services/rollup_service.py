"""Adherence rollups: session status derivation, day/window/week summaries and streaks."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from sqlalchemy.orm import Session

from config import settings
from db.models import CalendarEntry, CalendarSession, TrackingRecord
from services.calendar_service import resolve_entry
from services.errors import PlanValidationError
from services.tracking_service import TRACKING_STATUSES, records_for_entries
from utils.datetime_utils import end_of_week, iter_dates, start_of_week, today_for_tz
from utils.plan_fields import coerce_date, normalize_domain, round_half_up


def derive_session_status(
    session: CalendarSession,
    session_record: TrackingRecord | None,
    item_records: dict[int, TrackingRecord],
) -> str:
    """Status of one session.

    An explicit session-level record always wins. Otherwise the status comes
    from the item records: all completed -> completed, none touched ->
    pending, all skipped -> skipped, anything else -> partial.
    """
    if session_record is not None:
        return session_record.completion_status
    if not session.items:
        return "pending"
    statuses = [
        item_records[item.id].completion_status if item.id in item_records else "pending"
        for item in session.items
    ]
    if all(s == "completed" for s in statuses):
        return "completed"
    if all(s == "pending" for s in statuses):
        return "pending"
    if all(s == "skipped" for s in statuses):
        return "skipped"
    return "partial"


def _percentage(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return int(round_half_up(completed / total * 100))


def _empty_counts() -> dict[str, int]:
    return {
        "total_items": 0,
        "completed_items": 0,
        "skipped_items": 0,
        "total_sessions": 0,
        "completed_sessions": 0,
        "partial_sessions": 0,
        "skipped_sessions": 0,
        "pending_sessions": 0,
    }


def summarize_entry(entry: CalendarEntry, records: list[TrackingRecord]) -> dict[str, Any]:
    """Roll one entry's ledger records up into session and item counts."""
    session_records: dict[int, TrackingRecord] = {}
    item_records: dict[int, TrackingRecord] = {}
    entry_record: TrackingRecord | None = None
    for record in records:
        if record.calendar_entry_id != entry.id:
            continue
        if record.calendar_item_id is not None:
            item_records[record.calendar_item_id] = record
        elif record.calendar_session_id is not None:
            session_records[record.calendar_session_id] = record
        else:
            entry_record = record

    counts = _empty_counts()
    sessions_out: list[dict[str, Any]] = []
    for session in sorted(entry.sessions, key=lambda s: (s.session_order, s.id)):
        session_record = session_records.get(session.id)
        status = derive_session_status(session, session_record, item_records)

        completed_items = 0
        skipped_items = 0
        for item in session.items:
            record = item_records.get(item.id)
            if record is not None:
                item_status = record.completion_status
            elif session_record is not None and session_record.completion_status in ("completed", "skipped"):
                # A whole-session mark stands in for items that were never tracked.
                item_status = session_record.completion_status
            else:
                item_status = "pending"
            if item_status == "completed":
                completed_items += 1
            elif item_status == "skipped":
                skipped_items += 1

        total_items = len(session.items)
        counts["total_items"] += total_items
        counts["completed_items"] += completed_items
        counts["skipped_items"] += skipped_items
        counts["total_sessions"] += 1
        counts[f"{status}_sessions"] += 1
        sessions_out.append({
            "id": session.id,
            "name": session.name,
            "status": status,
            "source": "recorded" if session_record is not None else "derived",
            "total_items": total_items,
            "completed_items": completed_items,
            "skipped_items": skipped_items,
        })

    return {
        "date": entry.entry_date,
        "entry_id": entry.id,
        "materialized": True,
        "is_rest_day": bool(entry.is_rest_day),
        "is_override": bool(entry.is_override),
        "recorded_status": entry_record.completion_status if entry_record is not None else None,
        "sessions": sessions_out,
        **counts,
        "total_count": counts["total_items"],
        "completed_count": counts["completed_items"],
        "completion_percentage": _percentage(counts["completed_items"], counts["total_items"]),
    }


def _unmaterialized_day(on_date: date) -> dict[str, Any]:
    return {
        "date": on_date.isoformat(),
        "entry_id": None,
        "materialized": False,
        "is_rest_day": False,
        "is_override": False,
        "recorded_status": None,
        "sessions": [],
        **_empty_counts(),
        "total_count": 0,
        "completed_count": 0,
        "completion_percentage": 0,
    }


def day_summary(db: Session, subject_id: int, domain: str, on_date: date | str) -> dict[str, Any]:
    domain = normalize_domain(domain)
    on_date = coerce_date(on_date)
    entry = resolve_entry(db, subject_id, domain, on_date)
    if entry is None:
        return _unmaterialized_day(on_date)
    return summarize_entry(entry, records_for_entries(db, [entry.id]))


def _day_summaries(db: Session, subject_id: int, domain: str, start: date, end: date) -> list[dict[str, Any]]:
    entries = (
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
    records = records_for_entries(db, [e.id for e in entries])
    by_entry: dict[int, list[TrackingRecord]] = {}
    for record in records:
        by_entry.setdefault(record.calendar_entry_id, []).append(record)
    return [summarize_entry(entry, by_entry.get(entry.id, [])) for entry in entries]


def window_summary(
    db: Session,
    subject_id: int,
    domain: str,
    start: date | str,
    end: date | str,
) -> dict[str, Any]:
    """Summed counts over every materialized date in [start, end]."""
    domain = normalize_domain(domain)
    start = coerce_date(start, "start")
    end = coerce_date(end, "end")
    if end < start:
        raise PlanValidationError("end must not be before start", field="end")

    days = _day_summaries(db, subject_id, domain, start, end)
    totals = _empty_counts()
    for day in days:
        for key in totals:
            totals[key] += day[key]

    status_counts = {status: 0 for status in TRACKING_STATUSES}
    ledger = (
        db.query(TrackingRecord.completion_status)
        .filter(
            TrackingRecord.subject_id == subject_id,
            TrackingRecord.domain == domain,
            TrackingRecord.tracked_date >= start.isoformat(),
            TrackingRecord.tracked_date <= end.isoformat(),
        )
        .all()
    )
    for (status,) in ledger:
        status_counts[status] = status_counts.get(status, 0) + 1
    status_counts["total"] = len(ledger)

    return {
        "domain": domain,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "days": days,
        **totals,
        "total_count": totals["total_items"],
        "completed_count": totals["completed_items"],
        "status_counts": status_counts,
        "completion_percentage": _percentage(totals["completed_items"], totals["total_items"]),
    }


def week_summary(db: Session, subject_id: int, domain: str, on_date: date | str) -> dict[str, Any]:
    on_date = coerce_date(on_date)
    summary = window_summary(db, subject_id, domain, start_of_week(on_date), end_of_week(on_date))
    summary["week_start"] = summary["start"]
    summary["week_end"] = summary["end"]
    return summary


def streak(db: Session, subject_id: int, domain: str, reference_date: date | str | None = None) -> int:
    """Consecutive days, ending at the reference date, with at least one completed session."""
    domain = normalize_domain(domain)
    if reference_date is None:
        reference = today_for_tz(settings.DEFAULT_TIMEZONE)
    else:
        reference = coerce_date(reference_date, "reference_date")
    earliest = reference - timedelta(days=settings.STREAK_LOOKBACK_DAYS - 1)

    completed_by_date = {
        day["date"]: day["completed_sessions"]
        for day in _day_summaries(db, subject_id, domain, earliest, reference)
    }
    count = 0
    for day in reversed(list(iter_dates(earliest, reference))):
        if completed_by_date.get(day.isoformat(), 0) < 1:
            break
        count += 1
    return count


def progress_summary(
    db: Session,
    subject_id: int,
    domain: str,
    start: date | str,
    end: date | str,
    reference_date: date | str | None = None,
) -> dict[str, Any]:
    summary = window_summary(db, subject_id, domain, start, end)
    summary["streak"] = streak(db, subject_id, domain, reference_date or summary["end"])
    return summary
