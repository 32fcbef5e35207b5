"""Completion ledger for calendar entries, sessions and items.

Records are keyed by (entry, session, item). Writing the same key again
updates the existing row; there is no delete path.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import CalendarEntry, CalendarItem, CalendarSession, TrackingRecord
from services.errors import NotFoundError, PlanValidationError
from utils.datetime_utils import utcnow_naive
from utils.plan_fields import actual_fields_dict, coerce_actual_fields, coerce_date, normalize_domain


logger = logging.getLogger(__name__)

TRACKING_STATUSES = ("pending", "completed", "partial", "skipped")
_UNSET = object()


def record_key(calendar_entry_id: int, calendar_session_id: int | None, calendar_item_id: int | None) -> str:
    session_part = str(calendar_session_id) if calendar_session_id is not None else "-"
    item_part = str(calendar_item_id) if calendar_item_id is not None else "-"
    return f"{calendar_entry_id}:{session_part}:{item_part}"


def _normalize_status(status: str | None, *, item_level: bool) -> str | None:
    if status is None:
        return None
    value = str(status).strip().lower()
    if value not in TRACKING_STATUSES:
        raise PlanValidationError(f"Unsupported status: {status}", field="status")
    if item_level and value == "partial":
        raise PlanValidationError("Items are either completed or skipped; partial is not allowed", field="status")
    return value


def _normalize_rating(rating: Any) -> int | None:
    if rating is None or rating == "":
        return None
    if isinstance(rating, bool):
        raise PlanValidationError("rating must be 1-5", field="rating")
    try:
        value = int(rating)
    except (TypeError, ValueError):
        raise PlanValidationError("rating must be 1-5", field="rating") from None
    if not 1 <= value <= 5:
        raise PlanValidationError("rating must be 1-5", field="rating")
    return value


def _normalize_media(media: Any) -> str | None:
    if media is None:
        return None
    if isinstance(media, str):
        media = [media]
    if not isinstance(media, (list, tuple)):
        raise PlanValidationError("media must be a list of references", field="media")
    refs = [str(ref).strip() for ref in media if str(ref).strip()]
    return json.dumps(refs, ensure_ascii=True)


def _resolve_references(
    db: Session,
    subject_id: int,
    domain: str,
    calendar_entry_id: int,
    calendar_session_id: int | None,
    calendar_item_id: int | None,
) -> tuple[CalendarEntry, int | None, int | None]:
    entry = db.query(CalendarEntry).filter(CalendarEntry.id == calendar_entry_id).first()
    if entry is None or entry.subject_id != subject_id or entry.domain != domain:
        raise NotFoundError(f"Calendar entry {calendar_entry_id} not found")

    if calendar_session_id is not None:
        session = db.query(CalendarSession).filter(CalendarSession.id == calendar_session_id).first()
        if session is None or session.calendar_entry_id != entry.id:
            raise PlanValidationError(
                f"Session {calendar_session_id} does not belong to entry {entry.id}",
                field="calendar_session_id",
            )

    if calendar_item_id is not None:
        item = db.query(CalendarItem).filter(CalendarItem.id == calendar_item_id).first()
        if item is None or item.session is None or item.session.calendar_entry_id != entry.id:
            raise PlanValidationError(
                f"Item {calendar_item_id} does not belong to entry {entry.id}",
                field="calendar_item_id",
            )
        if calendar_session_id is None:
            calendar_session_id = item.calendar_session_id
        elif item.calendar_session_id != calendar_session_id:
            raise PlanValidationError(
                f"Item {calendar_item_id} does not belong to session {calendar_session_id}",
                field="calendar_item_id",
            )
    return entry, calendar_session_id, calendar_item_id


def _apply_fields(
    record: TrackingRecord,
    *,
    status: str | None,
    actuals: dict[str, Any],
    notes: Any,
    media: Any,
    rating: Any,
) -> None:
    if status is not None:
        record.completion_status = status
    for field, value in actuals.items():
        setattr(record, field, value)
    if notes is not _UNSET:
        record.notes = notes or None
    if media is not _UNSET:
        record.media = media
    if rating is not _UNSET:
        record.rating = rating
    record.tracked_at = utcnow_naive()


def _get_by_key(db: Session, key: str) -> TrackingRecord | None:
    return db.query(TrackingRecord).filter(TrackingRecord.record_key == key).first()


def upsert_tracking(
    db: Session,
    subject_id: int,
    domain: str,
    *,
    calendar_entry_id: int,
    calendar_session_id: int | None = None,
    calendar_item_id: int | None = None,
    status: str | None = None,
    actuals: dict[str, Any] | None = None,
    notes: str | None = None,
    media: list[str] | None = None,
    rating: int | None = None,
    tracked_date: date | str | None = None,
) -> TrackingRecord:
    """Create or update the ledger record for one entry/session/item key.

    Only the fields passed in change on an existing record. A new record
    starts as pending unless a status is given.
    """
    domain = normalize_domain(domain)
    entry, calendar_session_id, calendar_item_id = _resolve_references(
        db, subject_id, domain, calendar_entry_id, calendar_session_id, calendar_item_id,
    )
    status_value = _normalize_status(status, item_level=calendar_item_id is not None)
    actual_values = coerce_actual_fields(domain, actuals)
    fields = {
        "status": status_value,
        "actuals": actual_values,
        "notes": notes if notes is not None else _UNSET,
        "media": _normalize_media(media) if media is not None else _UNSET,
        "rating": _normalize_rating(rating) if rating is not None else _UNSET,
    }
    day = coerce_date(tracked_date, "tracked_date") if tracked_date is not None else coerce_date(entry.entry_date)
    key = record_key(entry.id, calendar_session_id, calendar_item_id)

    record = _get_by_key(db, key)
    if record is not None:
        _apply_fields(record, **fields)
        if tracked_date is not None:
            record.tracked_date = day.isoformat()
        db.commit()
        db.refresh(record)
        return record

    record = TrackingRecord(
        subject_id=subject_id,
        domain=domain,
        calendar_entry_id=entry.id,
        calendar_session_id=calendar_session_id,
        calendar_item_id=calendar_item_id,
        record_key=key,
        tracked_date=day.isoformat(),
        completion_status="pending",
    )
    _apply_fields(record, **fields)
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = _get_by_key(db, key)
        if winner is None:
            raise
        logger.warning("Concurrent tracking insert for key %s; updating record %s", key, winner.id)
        _apply_fields(winner, **fields)
        db.commit()
        record = winner
    db.refresh(record)
    return record


def get_tracking(db: Session, subject_id: int, record_id: int) -> TrackingRecord:
    record = db.query(TrackingRecord).filter(TrackingRecord.id == record_id).first()
    if record is None or record.subject_id != subject_id:
        raise NotFoundError(f"Tracking record {record_id} not found")
    return record


def update_tracking(db: Session, subject_id: int, record_id: int, fields: dict[str, Any]) -> TrackingRecord:
    record = get_tracking(db, subject_id, record_id)
    unknown = set(fields) - {"status", "actuals", "notes", "media", "rating"}
    if unknown:
        name = sorted(unknown)[0]
        raise PlanValidationError(f"Unsupported tracking field: {name}", field=name)
    _apply_fields(
        record,
        status=_normalize_status(fields.get("status"), item_level=record.calendar_item_id is not None),
        actuals=coerce_actual_fields(record.domain, fields.get("actuals")),
        notes=fields["notes"] if "notes" in fields else _UNSET,
        media=_normalize_media(fields["media"]) if "media" in fields else _UNSET,
        rating=_normalize_rating(fields["rating"]) if "rating" in fields else _UNSET,
    )
    db.flush()
    return record


def query_tracking(
    db: Session,
    subject_id: int,
    domain: str,
    start: date | str,
    end: date | str,
) -> list[TrackingRecord]:
    domain = normalize_domain(domain)
    start = coerce_date(start, "start")
    end = coerce_date(end, "end")
    if end < start:
        raise PlanValidationError("end must not be before start", field="end")
    return (
        db.query(TrackingRecord)
        .filter(
            TrackingRecord.subject_id == subject_id,
            TrackingRecord.domain == domain,
            TrackingRecord.tracked_date >= start.isoformat(),
            TrackingRecord.tracked_date <= end.isoformat(),
        )
        .order_by(TrackingRecord.tracked_date.asc(), TrackingRecord.id.asc())
        .all()
    )


def records_for_entries(db: Session, entry_ids: list[int]) -> list[TrackingRecord]:
    if not entry_ids:
        return []
    return (
        db.query(TrackingRecord)
        .filter(TrackingRecord.calendar_entry_id.in_(entry_ids))
        .order_by(TrackingRecord.id.asc())
        .all()
    )


def tracking_to_dict(record: TrackingRecord) -> dict[str, Any]:
    media = []
    if record.media:
        try:
            media = json.loads(record.media)
        except json.JSONDecodeError:
            media = []
    return {
        "id": record.id,
        "domain": record.domain,
        "calendar_entry_id": record.calendar_entry_id,
        "calendar_session_id": record.calendar_session_id,
        "calendar_item_id": record.calendar_item_id,
        "tracked_date": record.tracked_date,
        "tracked_at": record.tracked_at.isoformat() if record.tracked_at else None,
        "status": record.completion_status,
        "actuals": actual_fields_dict(record, record.domain),
        "notes": record.notes,
        "media": media,
        "rating": record.rating,
    }
