"""
Document-control operations.

Every function takes the caller's session and acting user, raises a
DocControlError subclass on failure, and never commits: the caller (request
handler, script, test) owns the transaction. Notifications queued here go
out only after that commit.
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime
from typing import BinaryIO

from sqlalchemy import select
from sqlalchemy.orm import Session
from werkzeug.utils import secure_filename

from app.doccontrol.audit import (
    DocumentCreated,
    DocumentDeleted,
    DocumentUpdated,
    FileAttached,
    VersionCreated,
    record_document_event,
    record_event,
)
from app.doccontrol.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from app.doccontrol.models import User
from app.doccontrol.rbac import is_admin
from app.doccontrol.scanning import ScanError, Scanner
from app.doccontrol.storage import Storage

from . import numbering, repository
from .approvals import (
    add_approver,
    record_decision,
    remove_approver,
    submit_for_approval,
    withdraw_from_approval,
)
from .lifecycle import DELETE, EDIT, RELEASE, Actor, Facts, transition
from .models import DRAFT, IN_APPROVAL, RELEASED, Approver, Document, DocumentFile
from .promotion import promote
from .release import METHOD_BYPASS, METHOD_DIRECT, complete_release
from .versioning import initial_version, next_version

logger = logging.getLogger(__name__)

__all__ = [
    "add_approver",
    "attach_file",
    "create_document",
    "create_new_version",
    "delete_document",
    "document_lineage",
    "get_document",
    "latest_released_version",
    "open_file",
    "pending_approvals",
    "promote_to_production",
    "record_approval_decision",
    "release_directly",
    "remove_approver",
    "submit_for_approval",
    "update_document",
    "withdraw_from_approval",
]

_PROJECT_CODE_RE = re.compile(r"P-\d{5}")

record_approval_decision = record_decision
promote_to_production = promote


def _creator(doc: Document, user: User) -> Actor:
    return Actor(is_creator=doc.created_by_user_id == user.id)


def clean_title(title: str | None) -> str:
    title = (title or "").strip()
    if not 1 <= len(title) <= 200:
        raise ValidationError("Title must be 1-200 characters")
    return title


def clean_description(description: str | None) -> str | None:
    description = (description or "").strip()
    if len(description) > 2000:
        raise ValidationError("Description must be at most 2000 characters")
    return description or None


def clean_project_code(code: str | None) -> str | None:
    code = (code or "").strip().upper()
    if not code:
        return None
    if not _PROJECT_CODE_RE.fullmatch(code):
        raise ValidationError("Project code must look like P-12345")
    return code


def get_document(s: Session, document_id: int, *, actor: User) -> Document:
    return repository.get_document(s, document_id, tenant_id=actor.tenant_id)


def create_document(
    s: Session,
    *,
    document_type_id: int,
    title: str,
    description: str | None = None,
    project_code: str | None = None,
    is_production: bool = False,
    actor: User,
) -> Document:
    if is_production:
        raise ValidationError("Production documents are created by promoting a Released prototype")
    title = clean_title(title)
    description = clean_description(description)
    project_code = clean_project_code(project_code)

    number = numbering.allocate(s, document_type_id, tenant_id=actor.tenant_id, admin_override=is_admin(actor))
    now = datetime.utcnow()
    doc = Document(
        tenant_id=actor.tenant_id,
        document_type_id=document_type_id,
        document_number=number,
        version=initial_version(False),
        is_production=False,
        title=title,
        description=description,
        project_code=project_code,
        status=DRAFT,
        created_by_user_id=actor.id,
        created_at=now,
        updated_at=now,
    )
    s.add(doc)
    repository.flush(s)

    record_document_event(s, actor=actor, document=doc, details=DocumentCreated(title=title, is_production=False))
    logger.info("Created %s (%s)", doc.label, title)
    return doc


def update_document(
    s: Session,
    document_id: int,
    *,
    title: str | None = None,
    description: str | None = None,
    project_code: str | None = None,
    actor: User,
) -> Document:
    """Edit title, description or project code. Draft only; `None` leaves a field as is."""
    doc = repository.get_document(s, document_id, tenant_id=actor.tenant_id, for_update=True)
    transition(doc.status, EDIT, _creator(doc, actor))

    updates: dict[str, str | None] = {}
    if title is not None:
        updates["title"] = clean_title(title)
    if description is not None:
        updates["description"] = clean_description(description)
    if project_code is not None:
        updates["project_code"] = clean_project_code(project_code)

    changes = {}
    for field, value in updates.items():
        old = getattr(doc, field)
        if old != value:
            changes[field] = {"from": old, "to": value}
            setattr(doc, field, value)
    if not changes:
        return doc

    doc.updated_at = datetime.utcnow()
    repository.flush(s)
    record_document_event(s, actor=actor, document=doc, details=DocumentUpdated(changes=changes))
    logger.info("Updated %s: %s", doc.label, ", ".join(sorted(changes)))
    return doc


def delete_document(s: Session, document_id: int, *, actor: User, storage: Storage | None = None) -> int:
    """
    Delete a Draft and its stored files. Returns the number of files removed.
    The allocated number is not handed back.
    """
    doc = repository.get_document(s, document_id, tenant_id=actor.tenant_id, for_update=True)
    transition(doc.status, DELETE, _creator(doc, actor))
    keys = [f.storage_key for f in doc.files]
    label = doc.label

    s.delete(doc)
    repository.flush(s)
    record_document_event(s, actor=actor, document=doc, details=DocumentDeleted(files_removed=len(keys)))

    removed = 0
    for key in keys:
        if storage is None:
            logger.warning("No storage configured; leaving %s in place", key)
            continue
        try:
            storage.delete(key)
            removed += 1
        except Exception:
            logger.exception("Failed to remove stored file %s for deleted %s", key, label)
    logger.info("Deleted %s (%d file(s) removed)", label, removed)
    return removed


def release_directly(
    s: Session, document_id: int, *, actor: User, bypass_approval: bool = False
) -> Document:
    """
    Release a Draft without the approval workflow.

    Allowed when the document has no approvers, or when it is a prototype and
    the caller explicitly bypasses approval. Production documents with
    approvers must go through submit_for_approval.
    """
    doc = repository.get_document(s, document_id, tenant_id=actor.tenant_id, for_update=True)
    count = len(repository.approvers_of(s, doc))
    facts = Facts(approver_count=count, is_production=doc.is_production, bypass_approval=bypass_approval)
    doc.status = transition(doc.status, RELEASE, _creator(doc, actor), facts)
    complete_release(s, doc, actor=actor, method=METHOD_BYPASS if count else METHOD_DIRECT)
    return doc


def create_new_version(s: Session, source_id: int, *, actor: User) -> Document:
    """Start the next version (vA -> vB, v1 -> v2) of a Released document as a Draft."""
    source = repository.get_document(s, source_id, tenant_id=actor.tenant_id, for_update=True)
    if source.status != RELEASED:
        raise InvalidStateError(
            current=source.status,
            attempted="create_new_version",
            message=f"Cannot create a new version of {source.label}: source must be Released",
        )
    open_versions = [
        d
        for d in repository.lineage(
            s,
            tenant_id=source.tenant_id,
            document_number=source.document_number,
            is_production=source.is_production,
        )
        if d.status in (DRAFT, IN_APPROVAL)
    ]
    if open_versions:
        raise InvalidStateError(
            current=source.status,
            attempted="create_new_version",
            message=f"{open_versions[0].label} is already in progress ({open_versions[0].status})",
        )

    version = next_version(source.version, source.is_production)
    if repository.find_version(
        s, tenant_id=source.tenant_id, document_number=source.document_number, version=version
    ):
        raise ConflictError(f"{source.document_number}{version} already exists; reload and try again")

    now = datetime.utcnow()
    doc = Document(
        tenant_id=source.tenant_id,
        document_type_id=source.document_type_id,
        document_number=source.document_number,
        version=version,
        is_production=source.is_production,
        title=source.title,
        description=source.description,
        project_code=source.project_code,
        status=DRAFT,
        created_by_user_id=actor.id,
        created_at=now,
        updated_at=now,
    )
    s.add(doc)
    repository.flush(s)

    record_document_event(
        s,
        actor=actor,
        document=doc,
        details=VersionCreated(source_document_id=source.id, source_version=source.version, new_version=version),
    )
    logger.info("Created %s from %s", doc.label, source.label)
    return doc


def file_digest(data: bytes) -> tuple[str, int]:
    return hashlib.sha256(data).hexdigest(), len(data)


def sanitize_upload_filename(filename: str) -> str:
    return secure_filename(filename or "") or "document.bin"


def attach_file(
    s: Session,
    document_id: int,
    *,
    filename: str,
    data: bytes,
    content_type: str | None = None,
    actor: User,
    storage: Storage,
    scanner: Scanner,
) -> DocumentFile:
    doc = repository.get_document(s, document_id, tenant_id=actor.tenant_id, for_update=True)
    transition(doc.status, EDIT, _creator(doc, actor))
    if not data:
        raise ValidationError("File is empty")

    safe_name = sanitize_upload_filename(filename)
    sha256, size = file_digest(data)
    try:
        result = scanner.scan_file(data, safe_name)
    except ScanError as e:
        logger.warning("Virus scan failed for %s on %s: %s", safe_name, doc.label, e)
        raise ValidationError("File could not be scanned; try again later") from e
    if not result.safe:
        logger.warning("Rejected infected upload %s for %s (malicious=%d)", safe_name, doc.label, result.malicious)
        raise ValidationError(
            "File was flagged as malicious and was not stored",
            details={"malicious": result.malicious, "suspicious": result.suspicious},
        )

    key = f"documents/{doc.document_number}/{doc.version}/{sha256[:12]}-{safe_name}"
    storage.put_bytes(key, data, content_type=content_type or "application/octet-stream")

    f = DocumentFile(
        document_id=doc.id,
        storage_key=key,
        filename=safe_name,
        original_filename=(filename or safe_name)[:255],
        content_type=content_type or "application/octet-stream",
        sha256=sha256,
        size_bytes=size,
        scan_status=result.status,
        uploaded_by_user_id=actor.id,
    )
    s.add(f)
    doc.updated_at = datetime.utcnow()
    repository.flush(s, what="file")

    record_document_event(
        s,
        actor=actor,
        document=doc,
        details=FileAttached(filename=safe_name, sha256=sha256, size_bytes=size, scan_status=result.status),
    )
    logger.info("Attached %s to %s (%d bytes, scan=%s)", safe_name, doc.label, size, result.status)
    return f


def open_file(
    s: Session, document_id: int, file_id: int, *, actor: User, storage: Storage
) -> tuple[DocumentFile, BinaryIO]:
    """Open an attachment for reading and audit the download. Any tenant user may read."""
    doc = repository.get_document(s, document_id, tenant_id=actor.tenant_id)
    f = s.execute(
        select(DocumentFile).where(DocumentFile.id == file_id, DocumentFile.document_id == doc.id)
    ).scalar_one_or_none()
    if f is None:
        raise NotFoundError("DocumentFile", file_id)
    try:
        fobj = storage.open(f.storage_key)
    except FileNotFoundError as e:
        logger.error("Stored object %s for %s is missing", f.storage_key, doc.label)
        raise NotFoundError("DocumentFile", file_id) from e

    record_event(
        s,
        actor=actor,
        action="file_downloaded",
        entity_type="DocumentFile",
        entity_id=str(f.id),
        metadata={"document_number": doc.label, "filename": f.filename, "sha256": f.sha256},
        tenant_id=doc.tenant_id,
        document=doc,
    )
    return f, fobj


def document_lineage(s: Session, document_id: int, *, actor: User) -> list[Document]:
    doc = repository.get_document(s, document_id, tenant_id=actor.tenant_id)
    return repository.lineage(
        s, tenant_id=doc.tenant_id, document_number=doc.document_number, is_production=doc.is_production
    )


def latest_released_version(
    s: Session, document_number: str, *, actor: User, is_production: bool | None = None
) -> Document | None:
    return repository.latest_released(
        s, tenant_id=actor.tenant_id, document_number=document_number.strip(), is_production=is_production
    )


def pending_approvals(s: Session, *, actor: User) -> list[Approver]:
    return repository.pending_approvals_for(s, actor)
