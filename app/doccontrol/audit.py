from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from flask import g, has_request_context
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.doccontrol.models import AuditEvent, User

if TYPE_CHECKING:
    from app.doccontrol.modules.document_control.models import Document

logger = logging.getLogger(__name__)


# Typed audit payloads, one per action. `action` is the tag stored on the row.


@dataclass(frozen=True)
class AuditDetails:
    action: ClassVar[str] = "event"

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class DocumentCreated(AuditDetails):
    action: ClassVar[str] = "created"
    title: str
    is_production: bool


@dataclass(frozen=True)
class DocumentUpdated(AuditDetails):
    action: ClassVar[str] = "updated"
    changes: dict[str, Any]


@dataclass(frozen=True)
class DocumentDeleted(AuditDetails):
    action: ClassVar[str] = "deleted"
    files_removed: int


@dataclass(frozen=True)
class ApproverAdded(AuditDetails):
    action: ClassVar[str] = "approver_added"
    approver_email: str


@dataclass(frozen=True)
class ApproverRemoved(AuditDetails):
    action: ClassVar[str] = "approver_removed"
    approver_email: str


@dataclass(frozen=True)
class SubmittedForApproval(AuditDetails):
    action: ClassVar[str] = "submitted_for_approval"
    approver_count: int


@dataclass(frozen=True)
class WithdrawnFromApproval(AuditDetails):
    action: ClassVar[str] = "withdrawn"


@dataclass(frozen=True)
class Approved(AuditDetails):
    action: ClassVar[str] = "approved"
    approver_email: str
    comments: str | None = None


@dataclass(frozen=True)
class Rejected(AuditDetails):
    action: ClassVar[str] = "rejected"
    approver_email: str
    rejection_reason: str


@dataclass(frozen=True)
class Released(AuditDetails):
    action: ClassVar[str] = "released"
    release_method: str  # approved | direct | bypass


@dataclass(frozen=True)
class Obsoleted(AuditDetails):
    action: ClassVar[str] = "document_obsoleted"
    superseded_by_document_id: int
    superseded_by_version: str
    superseded_by_document_number: str
    reason: str


@dataclass(frozen=True)
class VersionCreated(AuditDetails):
    action: ClassVar[str] = "version_created"
    source_document_id: int
    source_version: str
    new_version: str


@dataclass(frozen=True)
class PromotedToProduction(AuditDetails):
    action: ClassVar[str] = "promoted_to_production"
    source_document_id: int
    source_label: str
    production_document_id: int
    production_label: str


@dataclass(frozen=True)
class FileAttached(AuditDetails):
    action: ClassVar[str] = "file_attached"
    filename: str
    sha256: str
    size_bytes: int
    scan_status: str


@dataclass(frozen=True)
class AdHocDetails(AuditDetails):
    """Unstructured payload for one-off actions with no dedicated type."""

    action: ClassVar[str] = "event"
    name: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.data)


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
    tenant_id: int | None = None,
    document: "Document | None" = None,
) -> AuditEvent:
    """
    Append-only audit event helper.
    """
    rid = request_id
    if rid is None and has_request_context():
        rid = getattr(g, "request_id", None)
    ev = AuditEvent(
        request_id=rid,
        tenant_id=tenant_id if tenant_id is not None else (actor.tenant_id if actor else None),
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        document_id=document.id if document is not None else None,
        document_number=document.document_number if document is not None else None,
        version=document.version if document is not None else None,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(ev)
    return ev


def record_document_event(
    s: Session,
    *,
    actor: User | None,
    document: "Document",
    details: AuditDetails,
    reason: str | None = None,
) -> AuditEvent | None:
    """
    Audit an action on a document. Best effort: the write runs in a SAVEPOINT
    and a failure is logged, never raised, so it cannot undo the transition
    being audited.
    """
    action = details.name if isinstance(details, AdHocDetails) else details.action
    metadata = details.to_dict()
    metadata["document_number"] = document.label
    try:
        with s.begin_nested():
            ev = record_event(
                s,
                actor=actor,
                action=action,
                entity_type="Document",
                entity_id=str(document.id),
                reason=reason,
                metadata=metadata,
                tenant_id=document.tenant_id,
                document=document,
            )
            s.flush()
        return ev
    except SQLAlchemyError:
        logger.exception("Audit write failed (action=%s document=%s)", action, document.label)
        return None


def document_history(s: Session, document_id: int) -> list[AuditEvent]:
    return (
        s.query(AuditEvent)
        .filter(AuditEvent.document_id == document_id)
        .order_by(AuditEvent.created_at.asc(), AuditEvent.id.asc())
        .all()
    )


def audit_details(ev: AuditEvent) -> dict[str, Any]:
    return json.loads(ev.metadata_json) if ev.metadata_json else {}
