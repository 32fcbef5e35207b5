from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, status
from pydantic import BaseModel

from utils.plan_fields import normalize_domain


def get_subject_id(x_subject_id: Optional[int] = Header(default=None, alias="X-Subject-Id")) -> int:
    """Subject identity is resolved upstream and forwarded in X-Subject-Id."""
    if x_subject_id is None or x_subject_id < 1:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Subject-Id header is required")
    return x_subject_id


def get_domain(domain: str) -> str:
    return normalize_domain(domain)


class PlannedFields(BaseModel):
    # fitness
    sets: Optional[int] = None
    reps: Optional[str] = None
    duration: Optional[int | str] = None
    duration_text: Optional[str] = None
    weight: Optional[float] = None
    weight_unit: Optional[str] = None
    set_01_rep: Optional[str] = None
    weight_01: Optional[float] = None
    set_02_rep: Optional[str] = None
    weight_02: Optional[float] = None
    set_03_rep: Optional[str] = None
    weight_03: Optional[float] = None
    rest_seconds: Optional[int] = None
    # diet
    quantity: Optional[str] = None
    calories: Optional[float] = None
    protein: Optional[float] = None
    carbs: Optional[float] = None
    fats: Optional[float] = None
    fiber: Optional[float] = None
    sugar: Optional[float] = None
    sodium: Optional[float] = None
    notes: Optional[str] = None
