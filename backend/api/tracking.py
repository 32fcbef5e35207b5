from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from api.deps import get_domain, get_subject_id
from db.database import get_db
from services.errors import NotFoundError
from services.tracking_service import (
    get_tracking,
    query_tracking,
    tracking_to_dict,
    update_tracking,
    upsert_tracking,
)


router = APIRouter(prefix="/{domain}/tracking", tags=["tracking"])


class TrackingUpsert(BaseModel):
    calendar_entry_id: int
    calendar_session_id: Optional[int] = None
    calendar_item_id: Optional[int] = None
    status: Optional[str] = None  # pending | completed | partial | skipped
    actuals: Optional[dict[str, Any]] = None
    notes: Optional[str] = None
    media: Optional[list[str]] = None
    rating: Optional[int] = None
    tracked_date: Optional[str] = None


class TrackingUpdate(BaseModel):
    status: Optional[str] = None
    actuals: Optional[dict[str, Any]] = None
    notes: Optional[str] = None
    media: Optional[list[str]] = None
    rating: Optional[int] = None


def _owned(db: Session, record_id: int, subject_id: int, domain: str):
    record = get_tracking(db, subject_id, record_id)
    if record.domain != domain:
        raise NotFoundError(f"Tracking record {record_id} not found")
    return record


@router.post("")
def upsert_tracking_record(
    payload: TrackingUpsert,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    record = upsert_tracking(db, subject_id, domain, **payload.model_dump())
    return tracking_to_dict(record)


@router.get("")
def list_tracking(
    start: str = Query(...),
    end: str = Query(...),
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    return [tracking_to_dict(r) for r in query_tracking(db, subject_id, domain, start, end)]


@router.get("/{record_id}")
def get_tracking_record(
    record_id: int,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    return tracking_to_dict(_owned(db, record_id, subject_id, domain))


@router.patch("/{record_id}")
def update_tracking_record(
    record_id: int,
    payload: TrackingUpdate,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    _owned(db, record_id, subject_id, domain)
    record = update_tracking(db, subject_id, record_id, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(record)
    return tracking_to_dict(record)
