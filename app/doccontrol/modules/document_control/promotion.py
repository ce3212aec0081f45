"""
Promotion of a Released Prototype into a new Production lineage.

Promotion never reuses the prototype's number: it allocates a fresh one from
the same document type and starts it at v1 in Draft. The new lineage keeps
`promoted_from_document_number` so that releasing its v1 can retire the
prototype (see obsolescence).
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.doccontrol.audit import PromotedToProduction, record_document_event
from app.doccontrol.errors import ConflictError, ValidationError
from app.doccontrol.models import User
from app.doccontrol.rbac import is_admin

from . import numbering, repository
from .models import DRAFT, RELEASED, Document
from .versioning import initial_version

logger = logging.getLogger(__name__)


def promote(s: Session, source_id: int, *, actor: User) -> Document:
    source = repository.get_document(s, source_id, tenant_id=actor.tenant_id, for_update=True)
    if source.is_production:
        raise ValidationError(f"{source.label} is already a production document")
    if source.status != RELEASED:
        raise ValidationError(f"Only Released prototypes can be promoted ({source.label} is {source.status})")
    admin = is_admin(actor)
    if source.created_by_user_id != actor.id and not admin:
        raise ValidationError("Only the document creator or an administrator can promote this document")

    number = numbering.allocate(s, source.document_type_id, tenant_id=source.tenant_id, admin_override=admin)
    version = initial_version(True)
    if repository.find_version(
        s, tenant_id=source.tenant_id, document_number=number, version=version, is_production=True
    ):
        raise ConflictError(f"Production {number}{version} already exists")

    now = datetime.utcnow()
    doc = Document(
        tenant_id=source.tenant_id,
        document_type_id=source.document_type_id,
        document_number=number,
        version=version,
        is_production=True,
        title=source.title,
        description=source.description,
        project_code=source.project_code,
        status=DRAFT,
        created_by_user_id=actor.id,
        created_at=now,
        updated_at=now,
        promoted_from_document_id=source.id,
        promoted_from_document_number=source.document_number,
    )
    s.add(doc)
    repository.flush(s)

    details = PromotedToProduction(
        source_document_id=source.id,
        source_label=source.label,
        production_document_id=doc.id,
        production_label=doc.label,
    )
    record_document_event(s, actor=actor, document=doc, details=details)
    record_document_event(s, actor=actor, document=source, details=details)
    logger.info("Promoted %s to production %s", source.label, doc.label)
    return doc
