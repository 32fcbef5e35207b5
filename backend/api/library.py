from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import PlannedFields, get_domain, get_subject_id
from db.database import get_db
from services.errors import NotFoundError
from services.library_service import (
    create_library_item,
    deactivate_library_item,
    get_library_item,
    library_item_to_dict,
    list_library_items,
    update_library_item,
)


router = APIRouter(prefix="/{domain}/library", tags=["library"])


class LibraryItemPayload(PlannedFields):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None


def _owned(db: Session, library_id: int, subject_id: int, domain: str):
    item = get_library_item(db, library_id, owner_id=subject_id)
    if item.domain != domain:
        raise NotFoundError(f"Library item {library_id} not found")
    return item


@router.get("")
def list_items(
    category: Optional[str] = Query(default=None),
    include_inactive: bool = Query(default=False),
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    items = list_library_items(db, subject_id, domain, category=category, include_inactive=include_inactive)
    return [library_item_to_dict(item) for item in items]


@router.post("", status_code=201)
def create_item(
    payload: LibraryItemPayload,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    item = create_library_item(db, subject_id, domain, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(item)
    return library_item_to_dict(item)


@router.get("/{library_id}")
def get_item(
    library_id: int,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    return library_item_to_dict(_owned(db, library_id, subject_id, domain))


@router.put("/{library_id}")
def update_item(
    library_id: int,
    payload: LibraryItemPayload,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    _owned(db, library_id, subject_id, domain)
    item = update_library_item(db, library_id, payload.model_dump(exclude_unset=True), owner_id=subject_id)
    db.commit()
    db.refresh(item)
    return library_item_to_dict(item)


@router.delete("/{library_id}")
def delete_item(
    library_id: int,
    domain: str = Depends(get_domain),
    subject_id: int = Depends(get_subject_id),
    db: Session = Depends(get_db),
):
    _owned(db, library_id, subject_id, domain)
    item = deactivate_library_item(db, library_id, owner_id=subject_id)
    db.commit()
    return {"id": item.id, "is_active": False}
