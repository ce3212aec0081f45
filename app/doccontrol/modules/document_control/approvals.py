"""
Approval consensus.

A document in approval is released only when every assigned approver has
approved (strict unanimity, no quorum). One rejection sends it back to
Draft. Every (re)submission starts a full re-review: `reset_approvers` is
the one place approver decisions are cleared, and it runs on submit and on
reject.

Each decision also touches the parent document row. Documents carry an
optimistic row version, so two decisions racing on the same document cannot
both commit against the same snapshot: the loser gets a ConflictError and
retries against committed state.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.doccontrol import notifications
from app.doccontrol.audit import (
    Approved,
    ApproverAdded,
    ApproverRemoved,
    Rejected,
    SubmittedForApproval,
    WithdrawnFromApproval,
    record_document_event,
)
from app.doccontrol.errors import AlreadyDecidedError, ConflictError, InvalidStateError, ValidationError
from app.doccontrol.models import User

from . import repository
from .lifecycle import CONSENSUS, EDIT, REJECT, SUBMIT, WITHDRAW, Actor, Facts, transition
from .models import APPROVED, IN_APPROVAL, PENDING, REJECTED, Approver, Document
from .release import METHOD_APPROVED, complete_release

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 1000


def _creator(doc: Document, user: User) -> Actor:
    return Actor(is_creator=doc.created_by_user_id == user.id)


def reset_approvers(s: Session, doc: Document) -> int:
    """Put every approver of `doc` back to Pending with no comments or date."""
    rows = repository.approvers_of(s, doc)
    for a in rows:
        a.status = PENDING
        a.comments = None
        a.action_date = None
    return len(rows)


def all_approved(approvers: list[Approver]) -> bool:
    approved = sum(1 for a in approvers if a.status == APPROVED)
    return bool(approvers) and approved == len(approvers)


def add_approver(s: Session, document_id: int, *, user_id: int, actor: User) -> Approver:
    doc = repository.get_document(s, document_id, tenant_id=actor.tenant_id, for_update=True)
    transition(doc.status, EDIT, _creator(doc, actor))
    reviewer = repository.get_user(s, user_id, tenant_id=doc.tenant_id)

    if any(a.user_id == reviewer.id for a in repository.approvers_of(s, doc)):
        raise ConflictError(f"{reviewer.email} is already an approver of {doc.label}")

    approver = Approver(
        tenant_id=doc.tenant_id,
        document_id=doc.id,
        user_id=reviewer.id,
        user_email=reviewer.email,
        status=PENDING,
    )
    s.add(approver)
    doc.updated_at = datetime.utcnow()
    repository.flush(s, what="approver")

    record_document_event(s, actor=actor, document=doc, details=ApproverAdded(approver_email=reviewer.email))
    logger.info("Approver %s added to %s", reviewer.email, doc.label)
    return approver


def remove_approver(s: Session, document_id: int, approver_id: int, *, actor: User) -> None:
    doc = repository.get_document(s, document_id, tenant_id=actor.tenant_id, for_update=True)
    transition(doc.status, EDIT, _creator(doc, actor))
    approver = repository.get_approver(s, doc, approver_id)
    email = approver.user_email

    s.delete(approver)
    doc.updated_at = datetime.utcnow()
    repository.flush(s, what="approver")

    record_document_event(s, actor=actor, document=doc, details=ApproverRemoved(approver_email=email))
    logger.info("Approver %s removed from %s", email, doc.label)


def submit_for_approval(s: Session, document_id: int, *, actor: User) -> Document:
    doc = repository.get_document(s, document_id, tenant_id=actor.tenant_id, for_update=True)
    count = len(repository.approvers_of(s, doc))
    doc.status = transition(doc.status, SUBMIT, _creator(doc, actor), Facts(approver_count=count))
    doc.updated_at = datetime.utcnow()
    repository.flush(s)
    reset_approvers(s, doc)
    repository.flush(s, what="approver")

    record_document_event(s, actor=actor, document=doc, details=SubmittedForApproval(approver_count=count))
    notifications.enqueue(
        s,
        notifications.APPROVAL_REQUESTED,
        [a.user_email for a in repository.approvers_of(s, doc)],
        {"label": doc.label, "title": doc.title, "document_id": doc.id, "actor_email": actor.email},
    )
    logger.info("Submitted %s for approval (%d approver(s))", doc.label, count)
    return doc


def withdraw_from_approval(s: Session, document_id: int, *, actor: User) -> Document:
    doc = repository.get_document(s, document_id, tenant_id=actor.tenant_id, for_update=True)
    doc.status = transition(doc.status, WITHDRAW, _creator(doc, actor))
    doc.updated_at = datetime.utcnow()
    repository.flush(s)

    record_document_event(s, actor=actor, document=doc, details=WithdrawnFromApproval())
    logger.info("Withdrew %s from approval", doc.label)
    return doc


def _clean_comments(decision: str, comments: str | None) -> str | None:
    text = (comments or "").strip()
    if len(text) > MAX_COMMENT_LENGTH:
        raise ValidationError(f"Comments must be at most {MAX_COMMENT_LENGTH} characters")
    if decision == REJECTED and not text:
        raise ValidationError("Rejection reason is required")
    return text or None


def record_decision(
    s: Session,
    document_id: int,
    approver_id: int,
    decision: str,
    comments: str | None = None,
    *,
    actor: User,
) -> bool:
    """
    Record one approver's decision and return whether every approver has now
    approved. Completing consensus releases the document in the same
    transaction.
    """
    if decision not in (APPROVED, REJECTED):
        raise ValidationError(f"Decision must be {APPROVED!r} or {REJECTED!r}")
    text = _clean_comments(decision, comments)

    doc = repository.get_document(s, document_id, tenant_id=actor.tenant_id, for_update=True)
    approver = repository.get_approver(s, doc, approver_id)
    who = Actor(is_assigned_approver=approver.user_id == actor.id)
    event = REJECT if decision == REJECTED else CONSENSUS

    if not who.is_assigned_approver:
        # let the state machine produce the AuthorizationError
        transition(doc.status, event, who)
    if approver.status != PENDING:
        raise AlreadyDecidedError(f"{approver.user_email} has already {approver.status.lower()} {doc.label}")
    if doc.status != IN_APPROVAL:
        raise InvalidStateError(current=doc.status, attempted=event)

    now = datetime.utcnow()
    approver.status = decision
    approver.comments = text
    approver.action_date = now
    doc.updated_at = now

    if decision == REJECTED:
        return _reject(s, doc, approver, who, actor=actor, reason=text or "")

    repository.flush(s)
    record_document_event(
        s, actor=actor, document=doc, details=Approved(approver_email=approver.user_email, comments=text)
    )

    done = all_approved(repository.approvers_of(s, doc))
    if done:
        doc.status = transition(doc.status, CONSENSUS, who)
        complete_release(s, doc, actor=actor, method=METHOD_APPROVED)
    else:
        notifications.enqueue(
            s,
            notifications.DOCUMENT_APPROVED,
            [repository.creator_email(s, doc)],
            {"label": doc.label, "title": doc.title, "actor_email": actor.email, "comments": text},
        )
    logger.info("%s approved %s (all_approved=%s)", actor.email, doc.label, done)
    return done


def _reject(s: Session, doc: Document, approver: Approver, who: Actor, *, actor: User, reason: str) -> bool:
    doc.status = transition(doc.status, REJECT, who)
    repository.flush(s)
    # the live row is cleared below; the audit row keeps the rejection
    record_document_event(
        s,
        actor=actor,
        document=doc,
        details=Rejected(approver_email=approver.user_email, rejection_reason=reason),
        reason=reason,
    )
    reset_approvers(s, doc)
    repository.flush(s)

    notifications.enqueue(
        s,
        notifications.DOCUMENT_REJECTED,
        [repository.creator_email(s, doc)],
        {"label": doc.label, "title": doc.title, "actor_email": actor.email, "rejection_reason": reason},
    )
    logger.info("%s rejected %s; returned to Draft", actor.email, doc.label)
    return False
