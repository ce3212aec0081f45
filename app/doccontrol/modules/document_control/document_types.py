from __future__ import annotations

import logging
import re
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.doccontrol.audit import record_event
from app.doccontrol.errors import AuthorizationError, ConflictError, ValidationError
from app.doccontrol.models import User
from app.doccontrol.rbac import is_admin

from . import repository
from .models import DocumentType

logger = logging.getLogger(__name__)

_PREFIX_RE = re.compile(r"[A-Z]{2,10}")


def normalize_prefix(prefix: str) -> str:
    return (prefix or "").strip().upper()


def _require_admin(actor: User) -> None:
    if not is_admin(actor):
        raise AuthorizationError("Only administrators can manage document types")


def _clean_name(name: str | None) -> str:
    name = (name or "").strip()
    if not 1 <= len(name) <= 100:
        raise ValidationError("Name must be 1-100 characters")
    return name


def _clean_description(description: str | None) -> str | None:
    description = (description or "").strip()
    if len(description) > 500:
        raise ValidationError("Description must be at most 500 characters")
    return description or None


def list_document_types(s: Session, *, tenant_id: int, include_inactive: bool = False) -> list[DocumentType]:
    stmt = select(DocumentType).where(DocumentType.tenant_id == tenant_id)
    if not include_inactive:
        stmt = stmt.where(DocumentType.is_active.is_(True))
    return list(s.execute(stmt.order_by(DocumentType.prefix.asc())).scalars())


def create_document_type(
    s: Session, *, name: str, prefix: str, description: str | None = None, actor: User
) -> DocumentType:
    _require_admin(actor)
    prefix = normalize_prefix(prefix)
    if not _PREFIX_RE.fullmatch(prefix):
        raise ValidationError("Prefix must be 2-10 uppercase letters")
    exists = s.execute(
        select(DocumentType.id).where(DocumentType.tenant_id == actor.tenant_id, DocumentType.prefix == prefix)
    ).first()
    if exists:
        raise ConflictError(f"Document type prefix {prefix} already exists")

    dt = DocumentType(
        tenant_id=actor.tenant_id,
        name=_clean_name(name),
        prefix=prefix,
        description=_clean_description(description),
        is_active=True,
        next_number=1,
    )
    s.add(dt)
    repository.flush(s, what="document type")
    record_event(
        s,
        actor=actor,
        action="document_type.create",
        entity_type="DocumentType",
        entity_id=str(dt.id),
        metadata={"prefix": prefix, "name": dt.name},
    )
    logger.info("Created document type %s (%s)", prefix, dt.name)
    return dt


def update_document_type(
    s: Session, document_type_id: int, *, name: str | None = None, description: str | None = None, actor: User
) -> DocumentType:
    """Prefix and counter are fixed once a type exists; only name and description change."""
    _require_admin(actor)
    dt = repository.get_document_type(s, document_type_id, tenant_id=actor.tenant_id)
    before = {"name": dt.name, "description": dt.description}
    if name is not None:
        dt.name = _clean_name(name)
    if description is not None:
        dt.description = _clean_description(description)
    dt.updated_at = datetime.utcnow()
    repository.flush(s, what="document type")

    changes = {k: {"from": v, "to": getattr(dt, k)} for k, v in before.items() if getattr(dt, k) != v}
    if changes:
        record_event(
            s,
            actor=actor,
            action="document_type.update",
            entity_type="DocumentType",
            entity_id=str(dt.id),
            metadata={"prefix": dt.prefix, "changes": changes},
        )
    return dt


def toggle_document_type(s: Session, document_type_id: int, *, actor: User) -> DocumentType:
    _require_admin(actor)
    dt = repository.get_document_type(s, document_type_id, tenant_id=actor.tenant_id)
    dt.is_active = not dt.is_active
    dt.updated_at = datetime.utcnow()
    repository.flush(s, what="document type")
    record_event(
        s,
        actor=actor,
        action="document_type.activate" if dt.is_active else "document_type.archive",
        entity_type="DocumentType",
        entity_id=str(dt.id),
        metadata={"prefix": dt.prefix},
    )
    logger.info("Document type %s is now %s", dt.prefix, "active" if dt.is_active else "archived")
    return dt
