from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from api.deps import get_subject_id
from db.database import get_db
from services.trend_service import (
    build_weekly_trends,
    list_measurements,
    measurement_to_dict,
    record_measurement,
)


router = APIRouter(tags=["trends"])


class MeasurementCreate(BaseModel):
    metric: str
    value: float
    unit: Optional[str] = None
    measured_at: Optional[str] = None
    source: str = "manual"
    notes: Optional[str] = None


@router.post("/measurements", status_code=201)
def create_measurement(
    payload: MeasurementCreate,
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    row = record_measurement(db, subject_id, **payload.model_dump())
    db.commit()
    db.refresh(row)
    return measurement_to_dict(row)


@router.get("/measurements")
def get_measurements(
    metric: Optional[str] = Query(default=None),
    start: Optional[str] = Query(default=None),
    end: Optional[str] = Query(default=None),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    return [measurement_to_dict(r) for r in list_measurements(db, subject_id, metric=metric, start=start, end=end)]


@router.get("/trends")
def get_trends(
    metrics: str = Query(default="weight,bmi,hba1c,compliance"),
    end_date: Optional[str] = Query(default=None),
    weeks: Optional[int] = Query(default=None),
    domain: Optional[str] = Query(default=None),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    requested = [m for m in metrics.split(",") if m.strip()]
    return build_weekly_trends(db, subject_id, requested, end_date=end_date, weeks=weeks, domain=domain)
