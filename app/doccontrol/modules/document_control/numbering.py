from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.doccontrol.errors import ConflictError, NotFoundError, ValidationError

from .models import DocumentType

logger = logging.getLogger(__name__)

NUMBER_WIDTH = 5
MAX_CAS_ATTEMPTS = 20


def format_document_number(prefix: str, number: int) -> str:
    return f"{prefix}-{number:0{NUMBER_WIDTH}d}"


def allocate(
    s: Session,
    document_type_id: int,
    *,
    tenant_id: int,
    admin_override: bool = False,
) -> str:
    """
    Allocate the next document number for a type, e.g. "FORM-00007".

    The counter is advanced with a compare-and-set UPDATE, so two callers can
    never be handed the same number; a caller that loses the race re-reads
    and tries again. Numbers are never handed back, even if the document
    that took one is later deleted.
    """
    row = s.execute(
        select(DocumentType.prefix, DocumentType.is_active).where(
            DocumentType.id == document_type_id,
            DocumentType.tenant_id == tenant_id,
        )
    ).one_or_none()
    if row is None:
        raise NotFoundError("DocumentType", document_type_id)
    prefix, is_active = row
    if not is_active and not admin_override:
        raise ValidationError(f"Document type {prefix} is archived; new numbers cannot be allocated")

    for attempt in range(MAX_CAS_ATTEMPTS):
        seen = s.execute(
            select(DocumentType.next_number).where(DocumentType.id == document_type_id)
        ).scalar_one()
        result = s.execute(
            update(DocumentType)
            .where(DocumentType.id == document_type_id, DocumentType.next_number == seen)
            .values(next_number=DocumentType.next_number + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            number = format_document_number(prefix, seen)
            logger.info("Allocated %s (type_id=%s attempt=%d)", number, document_type_id, attempt + 1)
            return number
        logger.debug("Number CAS lost for type_id=%s seen=%s; retrying", document_type_id, seen)

    raise ConflictError(f"Could not allocate a {prefix} number after {MAX_CAS_ATTEMPTS} attempts; retry")
