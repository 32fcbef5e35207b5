"""Reusable meal and exercise definitions that template items can link to."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import LibraryDefinition
from services.errors import ConflictError, NotFoundError, PlanValidationError
from utils.plan_fields import coerce_planned_fields, normalize_domain, planned_fields_dict, planned_fields_for


logger = logging.getLogger(__name__)


def _normalize_name(name: str) -> str:
    return " ".join(name.strip().lower().split())


def _require_name(payload: dict[str, Any]) -> str:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise PlanValidationError("Name is required", field="name")
    return name


def library_item_to_dict(item: LibraryDefinition) -> dict[str, Any]:
    return {
        "id": item.id,
        "domain": item.domain,
        "name": item.name,
        "description": item.description,
        "category": item.category,
        "is_active": bool(item.is_active),
        **planned_fields_dict(item, item.domain),
        "created_at": item.created_at.isoformat() if item.created_at else None,
        "updated_at": item.updated_at.isoformat() if item.updated_at else None,
    }


def _find_by_name(db: Session, owner_id: int, domain: str, normalized: str) -> LibraryDefinition | None:
    return (
        db.query(LibraryDefinition)
        .filter(
            LibraryDefinition.owner_id == owner_id,
            LibraryDefinition.domain == domain,
            LibraryDefinition.normalized_name == normalized,
        )
        .first()
    )


def create_library_item(db: Session, owner_id: int, domain: str, payload: dict[str, Any]) -> LibraryDefinition:
    domain = normalize_domain(domain)
    name = _require_name(payload)
    normalized = _normalize_name(name)
    planned = coerce_planned_fields(domain, payload)

    existing = _find_by_name(db, owner_id, domain, normalized)
    if existing is not None:
        if existing.is_active:
            raise ConflictError(f"A {domain} library item named '{name}' already exists", field="name")
        # Reactivate a soft-deleted definition with the new values.
        item = existing
        for field in planned_fields_for(domain):
            setattr(item, field, planned.get(field))
        item.is_active = True
    else:
        item = LibraryDefinition(owner_id=owner_id, domain=domain, normalized_name=normalized, **planned)
        db.add(item)

    item.name = name
    item.description = (payload.get("description") or None)
    item.category = (payload.get("category") or None)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"A {domain} library item named '{name}' already exists", field="name") from None
    return item


def list_library_items(
    db: Session,
    owner_id: int,
    domain: str,
    category: str | None = None,
    include_inactive: bool = False,
) -> list[LibraryDefinition]:
    domain = normalize_domain(domain)
    q = db.query(LibraryDefinition).filter(
        LibraryDefinition.owner_id == owner_id,
        LibraryDefinition.domain == domain,
    )
    if not include_inactive:
        q = q.filter(LibraryDefinition.is_active.is_(True))
    if category:
        q = q.filter(LibraryDefinition.category == category)
    return q.order_by(LibraryDefinition.normalized_name.asc()).all()


def get_library_item(db: Session, library_id: int, owner_id: int | None = None) -> LibraryDefinition:
    item = db.query(LibraryDefinition).filter(LibraryDefinition.id == library_id).first()
    if item is None or (owner_id is not None and item.owner_id != owner_id):
        raise NotFoundError(f"Library item {library_id} not found")
    return item


def update_library_item(
    db: Session,
    library_id: int,
    payload: dict[str, Any],
    owner_id: int | None = None,
) -> LibraryDefinition:
    item = get_library_item(db, library_id, owner_id=owner_id)
    if "name" in payload:
        name = _require_name(payload)
        normalized = _normalize_name(name)
        clash = _find_by_name(db, item.owner_id, item.domain, normalized)
        if clash is not None and clash.id != item.id:
            raise ConflictError(f"A {item.domain} library item named '{name}' already exists", field="name")
        item.name = name
        item.normalized_name = normalized
    if "description" in payload:
        item.description = payload.get("description") or None
    if "category" in payload:
        item.category = payload.get("category") or None
    for field, value in coerce_planned_fields(item.domain, payload).items():
        setattr(item, field, value)
    db.flush()
    return item


def deactivate_library_item(db: Session, library_id: int, owner_id: int | None = None) -> LibraryDefinition:
    item = get_library_item(db, library_id, owner_id=owner_id)
    item.is_active = False
    db.flush()
    logger.info("Library item %s deactivated", item.id)
    return item


def resolve_library_defaults(
    db: Session,
    owner_id: int,
    domain: str,
    library_id: int | None,
) -> LibraryDefinition | None:
    """Look up a linked definition for a template item, enforcing owner and domain."""
    if library_id is None:
        return None
    item = db.query(LibraryDefinition).filter(LibraryDefinition.id == library_id).first()
    if item is None or item.owner_id != owner_id or item.domain != domain:
        raise PlanValidationError(f"Unknown {domain} library item {library_id}", field="library_id")
    return item
