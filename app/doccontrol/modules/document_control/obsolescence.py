"""
Obsolescence cascade, run immediately after a document is Released.

1. A Production v1 supersedes the latest Released version of the Prototype
   lineage it was promoted from (found through the promotion back-reference,
   since promotion allocates a new number).
2. Any release supersedes its exact predecessor in its own lineage: the
   version whose sequence number is one lower (vB -> vA, v3 -> v2), not
   whichever row happens to have been created last.

This is cleanup, not a release precondition: a missing predecessor is logged
and the release stands.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.doccontrol.audit import Obsoleted, record_document_event
from app.doccontrol.models import User

from . import repository
from .lifecycle import SUPERSEDE, SYSTEM_ACTOR, transition
from .models import RELEASED, Document
from .versioning import predecessor_version

logger = logging.getLogger(__name__)

REASON_NEW_VERSION = "superseded_by_new_version"
REASON_PRODUCTION = "superseded_by_production"


def _obsolete(s: Session, target: Document, *, released: Document, actor: User | None, reason: str) -> None:
    target.status = transition(target.status, SUPERSEDE, SYSTEM_ACTOR)
    repository.flush(s)
    record_document_event(
        s,
        actor=actor,
        document=target,
        details=Obsoleted(
            superseded_by_document_id=released.id,
            superseded_by_version=released.version,
            superseded_by_document_number=released.document_number,
            reason=reason,
        ),
    )
    logger.info("Obsoleted %s (superseded by %s, %s)", target.label, released.label, reason)


def _production_source(s: Session, released: Document) -> Document | None:
    if not (released.is_production and released.version == "v1"):
        return None
    source_number = released.promoted_from_document_number
    if not source_number:
        return None
    source = repository.latest_released(
        s, tenant_id=released.tenant_id, document_number=source_number, is_production=False
    )
    if source is None:
        logger.info("No Released prototype left under %s to supersede with %s", source_number, released.label)
    return source


def _predecessor(s: Session, released: Document) -> Document | None:
    prev = predecessor_version(released.version, released.is_production)
    if prev is None:
        return None
    found = repository.find_version(
        s,
        tenant_id=released.tenant_id,
        document_number=released.document_number,
        version=prev,
        is_production=released.is_production,
    )
    if found is None:
        logger.warning("Expected predecessor %s%s of %s not found", released.document_number, prev, released.label)
        return None
    if found.status != RELEASED:
        logger.debug("Predecessor %s is %s; nothing to obsolete", found.label, found.status)
        return None
    return found


def resolve(s: Session, released: Document, *, actor: User | None) -> list[Document]:
    """Obsolete whatever `released` supersedes. Returns the documents that were obsoleted."""
    if released.status != RELEASED:
        raise ValueError(f"resolve() called for {released.label} in status {released.status!r}")

    obsoleted: list[Document] = []
    source = _production_source(s, released)
    if source is not None:
        _obsolete(s, source, released=released, actor=actor, reason=REASON_PRODUCTION)
        obsoleted.append(source)

    prev = _predecessor(s, released)
    if prev is not None:
        _obsolete(s, prev, released=released, actor=actor, reason=REASON_NEW_VERSION)
        obsoleted.append(prev)

    if not obsoleted:
        logger.debug("Release of %s superseded nothing", released.label)
    return obsoleted
