from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import get_domain, get_subject_id
from db.database import get_db
from services.rollup_service import day_summary, progress_summary, streak, week_summary


router = APIRouter(prefix="/{domain}/progress", tags=["progress"])


@router.get("")
def get_progress(
    start: str = Query(...),
    end: str = Query(...),
    reference_date: Optional[str] = Query(default=None),
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    return progress_summary(db, subject_id, domain, start, end, reference_date=reference_date)


@router.get("/day/{on_date}")
def get_day_summary(
    on_date: str,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    return day_summary(db, subject_id, domain, on_date)


@router.get("/week/{on_date}")
def get_week_summary(
    on_date: str,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    return week_summary(db, subject_id, domain, on_date)


@router.get("/streak")
def get_streak(
    reference_date: Optional[str] = Query(default=None),
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    return {"domain": domain, "streak": streak(db, subject_id, domain, reference_date)}
