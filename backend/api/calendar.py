from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from api.deps import PlannedFields, get_domain, get_subject_id
from db.database import get_db
from services.calendar_service import (
    add_item,
    add_session,
    apply_override,
    apply_template_range,
    entry_to_dict,
    list_entries,
    materialize_from_template,
    remove_item,
    remove_session,
    resolve_entry,
)


router = APIRouter(prefix="/{domain}/calendar", tags=["calendar"])


class CalendarItemPayload(PlannedFields):
    id: Optional[int] = None
    name: str
    library_id: Optional[int] = None
    item_order: Optional[int] = None


class CalendarSessionPayload(BaseModel):
    id: Optional[int] = None
    name: str
    session_order: Optional[int] = None
    notes: Optional[str] = None
    items: list[CalendarItemPayload] = []


class OverrideRequest(BaseModel):
    sessions: list[CalendarSessionPayload]
    notes: Optional[str] = None
    is_rest_day: Optional[bool] = None


class MaterializeRequest(BaseModel):
    template_id: Optional[int] = None


class ApplyTemplateRequest(BaseModel):
    start: str
    end: str
    template_id: Optional[int] = None
    refresh: bool = False


@router.get("")
def list_calendar(
    start: str = Query(...),
    end: str = Query(...),
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    return [entry_to_dict(e) for e in list_entries(db, subject_id, domain, start, end)]


@router.post("/apply-template")
def apply_template(
    payload: ApplyTemplateRequest,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    result = apply_template_range(
        db,
        subject_id,
        domain,
        payload.start,
        payload.end,
        template_id=payload.template_id,
        refresh=payload.refresh,
    )
    db.commit()
    return result


@router.get("/{entry_date}")
def get_calendar_entry(
    entry_date: str,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    entry = resolve_entry(db, subject_id, domain, entry_date)
    if entry is None:
        return {"entry": None, "materialized": False}
    return {"entry": entry_to_dict(entry), "materialized": True}


@router.post("/{entry_date}/materialize")
def materialize_entry(
    entry_date: str,
    payload: Optional[MaterializeRequest] = None,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    template_id = payload.template_id if payload is not None else None
    entry = materialize_from_template(db, subject_id, domain, entry_date, template_id=template_id)
    return entry_to_dict(entry)


@router.put("/{entry_date}")
def override_entry(
    entry_date: str,
    payload: OverrideRequest,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    body = payload.model_dump(exclude_unset=True)
    entry = apply_override(
        db,
        subject_id,
        domain,
        entry_date,
        body["sessions"],
        notes=payload.notes,
        is_rest_day=payload.is_rest_day,
    )
    db.commit()
    db.refresh(entry)
    return entry_to_dict(entry)


@router.post("/{entry_date}/sessions", status_code=201)
def add_calendar_session(
    entry_date: str,
    payload: CalendarSessionPayload,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    entry = add_session(db, subject_id, domain, entry_date, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(entry)
    return entry_to_dict(entry)


@router.delete("/{entry_date}/sessions/{session_id}")
def remove_calendar_session(
    entry_date: str,
    session_id: int,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    entry = remove_session(db, subject_id, domain, entry_date, session_id)
    db.commit()
    db.refresh(entry)
    return entry_to_dict(entry)


@router.post("/{entry_date}/sessions/{session_id}/items", status_code=201)
def add_calendar_item(
    entry_date: str,
    session_id: int,
    payload: CalendarItemPayload,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    entry = add_item(db, subject_id, domain, entry_date, session_id, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(entry)
    return entry_to_dict(entry)


@router.delete("/{entry_date}/items/{item_id}")
def remove_calendar_item(
    entry_date: str,
    item_id: int,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    entry = remove_item(db, subject_id, domain, entry_date, item_id)
    db.commit()
    db.refresh(entry)
    return entry_to_dict(entry)
