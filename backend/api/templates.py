from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from api.deps import PlannedFields, get_domain, get_subject_id
from db.database import get_db
from services.errors import NotFoundError
from services.template_service import (
    add_template_day,
    create_template,
    deactivate_template,
    get_template,
    list_templates,
    template_to_dict,
    update_template,
)


router = APIRouter(prefix="/{domain}/week-templates", tags=["week-templates"])


class TemplateItemPayload(PlannedFields):
    name: Optional[str] = None
    library_id: Optional[int] = None
    item_order: Optional[int] = None


class TemplateSessionPayload(BaseModel):
    name: str
    session_order: Optional[int] = None
    notes: Optional[str] = None
    items: list[TemplateItemPayload] = []


class TemplateDayPayload(BaseModel):
    day_of_week: int | str
    is_rest_day: bool = False
    notes: Optional[str] = None
    sessions: list[TemplateSessionPayload] = []


class TemplateCreate(BaseModel):
    name: str
    description: Optional[str] = None
    is_active: bool = True
    days: list[TemplateDayPayload] = []


class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    days: Optional[list[TemplateDayPayload]] = None


def _owned(db: Session, template_id: int, subject_id: int, domain: str):
    template = get_template(db, template_id, owner_id=subject_id)
    if template.domain != domain:
        raise NotFoundError(f"Week template {template_id} not found")
    return template


@router.get("")
def list_week_templates(
    include_inactive: bool = Query(default=False),
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    templates = list_templates(db, subject_id, domain, active_only=not include_inactive)
    return [template_to_dict(t) for t in templates]


@router.post("", status_code=201)
def create_week_template(
    payload: TemplateCreate,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    template = create_template(db, subject_id, domain, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(template)
    return template_to_dict(template)


@router.get("/{template_id}")
def get_week_template(
    template_id: int,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    return template_to_dict(_owned(db, template_id, subject_id, domain))


@router.put("/{template_id}")
def update_week_template(
    template_id: int,
    payload: TemplateUpdate,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    _owned(db, template_id, subject_id, domain)
    template = update_template(db, template_id, payload.model_dump(exclude_unset=True), owner_id=subject_id)
    db.commit()
    db.refresh(template)
    return template_to_dict(template)


@router.post("/{template_id}/days", status_code=201)
def add_week_template_day(
    template_id: int,
    payload: TemplateDayPayload,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    template = _owned(db, template_id, subject_id, domain)
    add_template_day(db, template_id, payload.model_dump(exclude_unset=True), owner_id=subject_id)
    db.commit()
    db.refresh(template)
    return template_to_dict(template)


@router.delete("/{template_id}")
def delete_week_template(
    template_id: int,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    _owned(db, template_id, subject_id, domain)
    template = deactivate_template(db, template_id, owner_id=subject_id)
    db.commit()
    return {"id": template.id, "is_active": False}
