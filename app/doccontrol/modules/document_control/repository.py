"""Tenant-scoped lookups and flush handling shared by the engine modules."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, contains_eager
from sqlalchemy.orm.exc import StaleDataError

from app.doccontrol.errors import ConflictError, NotFoundError
from app.doccontrol.models import User

from .models import IN_APPROVAL, PENDING, RELEASED, Approver, Document, DocumentType
from .versioning import sort_key


def flush(s: Session, *, what: str = "document") -> None:
    """
    Flush pending changes, reporting lost races as ConflictError.

    StaleDataError means another transaction changed a row we read (its
    row_version moved); IntegrityError here is a unique-constraint hit such
    as a duplicate (document_number, version). Either way the caller should
    reload and retry.
    """
    try:
        s.flush()
    except StaleDataError as e:
        s.rollback()
        raise ConflictError(f"The {what} was changed by someone else; reload and try again") from e
    except IntegrityError as e:
        s.rollback()
        raise ConflictError(f"Conflicting {what} already exists; reload and try again") from e


def get_document(s: Session, document_id: int, *, tenant_id: int, for_update: bool = False) -> Document:
    stmt = select(Document).where(Document.id == document_id, Document.tenant_id == tenant_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    doc = s.execute(stmt).scalar_one_or_none()
    if doc is None:
        raise NotFoundError("Document", document_id)
    return doc


def get_document_type(s: Session, document_type_id: int, *, tenant_id: int) -> DocumentType:
    dt = s.execute(
        select(DocumentType).where(DocumentType.id == document_type_id, DocumentType.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if dt is None:
        raise NotFoundError("DocumentType", document_type_id)
    return dt


def get_approver(s: Session, document: Document, approver_id: int) -> Approver:
    approver = s.execute(
        select(Approver)
        .where(Approver.id == approver_id, Approver.document_id == document.id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if approver is None:
        raise NotFoundError("Approver", approver_id)
    return approver


def approvers_of(s: Session, document: Document) -> list[Approver]:
    """Current approver rows for a document, re-read from the database."""
    return list(
        s.execute(
            select(Approver)
            .where(Approver.document_id == document.id)
            .order_by(Approver.id)
            .execution_options(populate_existing=True)
        ).scalars()
    )


def get_user(s: Session, user_id: int, *, tenant_id: int) -> User:
    user = s.execute(select(User).where(User.id == user_id, User.tenant_id == tenant_id)).scalar_one_or_none()
    if user is None or not user.is_active:
        raise NotFoundError("User", user_id)
    return user


def lineage(s: Session, *, tenant_id: int, document_number: str, is_production: bool | None = None) -> list[Document]:
    """All versions sharing a document number, in version order (vA, vB, ... or v1, v2, ...)."""
    stmt = select(Document).where(Document.tenant_id == tenant_id, Document.document_number == document_number)
    if is_production is not None:
        stmt = stmt.where(Document.is_production.is_(is_production))
    docs = list(s.execute(stmt).scalars())
    docs.sort(key=lambda d: (sort_key(d.version), d.created_at, d.id))
    return docs


def find_version(
    s: Session, *, tenant_id: int, document_number: str, version: str, is_production: bool | None = None
) -> Document | None:
    stmt = select(Document).where(
        Document.tenant_id == tenant_id,
        Document.document_number == document_number,
        Document.version == version,
    )
    if is_production is not None:
        stmt = stmt.where(Document.is_production.is_(is_production))
    return s.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none()


def latest_released(
    s: Session, *, tenant_id: int, document_number: str, is_production: bool | None = None
) -> Document | None:
    released = [
        d for d in lineage(s, tenant_id=tenant_id, document_number=document_number, is_production=is_production)
        if d.status == RELEASED
    ]
    if not released:
        return None
    return max(released, key=lambda d: (d.released_at or d.created_at, sort_key(d.version)))


def pending_approvals_for(s: Session, user: User) -> list[Approver]:
    return list(
        s.execute(
            select(Approver)
            .join(Document, Document.id == Approver.document_id)
            .where(
                Approver.user_id == user.id,
                Approver.tenant_id == user.tenant_id,
                Approver.status == PENDING,
                Document.status == IN_APPROVAL,
            )
            .options(contains_eager(Approver.document))
            .order_by(Approver.created_at.desc())
        ).scalars()
    )


def creator_email(s: Session, document: Document) -> str:
    creator = s.get(User, document.created_by_user_id)
    return creator.email if creator else ""
