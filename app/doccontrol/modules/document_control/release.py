from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.doccontrol import notifications
from app.doccontrol.audit import Released, record_document_event
from app.doccontrol.models import User

from . import obsolescence, repository
from .models import RELEASED, Document

logger = logging.getLogger(__name__)

METHOD_APPROVED = "approved"
METHOD_DIRECT = "direct"
METHOD_BYPASS = "bypass"


def complete_release(s: Session, doc: Document, *, actor: User, method: str) -> list[Document]:
    """
    Finish a transition into Released that the state machine already allowed.

    Order matters: status and release stamp, release audit, obsolescence
    cascade, then the (post-commit) notification. `actor` is the user whose
    action completed the release; for consensus that is the last approver.
    """
    if doc.status != RELEASED:
        raise ValueError(f"complete_release() called for {doc.label} in status {doc.status!r}")
    now = datetime.utcnow()
    doc.released_at = now
    doc.released_by_user_id = actor.id
    doc.updated_at = now
    repository.flush(s)

    record_document_event(s, actor=actor, document=doc, details=Released(release_method=method))
    logger.info("Released %s (method=%s by user_id=%s)", doc.label, method, actor.id)

    obsoleted = obsolescence.resolve(s, doc, actor=actor)

    creator_email = repository.creator_email(s, doc)
    notifications.enqueue(
        s,
        notifications.DOCUMENT_RELEASED,
        [creator_email] + [a.user_email for a in repository.approvers_of(s, doc)],
        {
            "label": doc.label,
            "title": doc.title,
            "document_id": doc.id,
            "released_at": now.isoformat(timespec="seconds"),
            "obsoleted": [d.label for d in obsoleted],
        },
    )
    return obsoleted
