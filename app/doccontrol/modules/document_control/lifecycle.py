"""
Document status state machine.

    Draft --submit--> In Approval --consensus--> Released --supersede--> Obsolete
      |  ^                |
      |  +--reject/withdraw
      +--release (no approvers, or prototype with explicit bypass)--> Released
      +--delete--> (row removed)

`transition()` is the single authority for status changes. It knows nothing
about persistence: callers describe who is acting and the facts the guards
need, and get back the new status or a typed error. Obsolete is terminal.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.doccontrol.errors import AuthorizationError, InvalidStateError, ValidationError

from .models import DRAFT, IN_APPROVAL, OBSOLETE, RELEASED

DELETED = "Deleted"

# events
EDIT = "edit"
SUBMIT = "submit"
RELEASE = "release"
CONSENSUS = "consensus"
REJECT = "reject"
WITHDRAW = "withdraw"
DELETE = "delete"
SUPERSEDE = "supersede"

# who may trigger an event
CREATOR = "creator"
APPROVER = "approver"
SYSTEM = "system"

EVENT_AUTHORITY = {
    EDIT: CREATOR,
    SUBMIT: CREATOR,
    RELEASE: CREATOR,
    WITHDRAW: CREATOR,
    DELETE: CREATOR,
    CONSENSUS: APPROVER,
    REJECT: APPROVER,
    SUPERSEDE: SYSTEM,
}

TRANSITIONS: dict[tuple[str, str], str] = {
    (DRAFT, EDIT): DRAFT,
    (DRAFT, SUBMIT): IN_APPROVAL,
    (DRAFT, RELEASE): RELEASED,
    (DRAFT, DELETE): DELETED,
    (IN_APPROVAL, CONSENSUS): RELEASED,
    (IN_APPROVAL, REJECT): DRAFT,
    (IN_APPROVAL, WITHDRAW): DRAFT,
    (RELEASED, SUPERSEDE): OBSOLETE,
}


@dataclass(frozen=True)
class Actor:
    """The party attempting a transition, as seen by the state machine."""

    is_creator: bool = False
    is_assigned_approver: bool = False
    is_system: bool = False


SYSTEM_ACTOR = Actor(is_system=True)


@dataclass(frozen=True)
class Facts:
    approver_count: int = 0
    is_production: bool = False
    bypass_approval: bool = False


def allowed_events(current: str) -> list[str]:
    return [ev for (state, ev) in TRANSITIONS if state == current]


def _authorize(event: str, actor: Actor) -> None:
    needed = EVENT_AUTHORITY[event]
    if needed == CREATOR and not actor.is_creator:
        raise AuthorizationError(f"Only the document creator can {event} this document")
    if needed == APPROVER and not actor.is_assigned_approver:
        raise AuthorizationError("You are not assigned as an approver for this document")
    if needed == SYSTEM and not actor.is_system:
        raise AuthorizationError("Documents are made obsolete only by releasing a newer version")


def _check_guards(event: str, facts: Facts) -> None:
    if event == SUBMIT and facts.approver_count < 1:
        raise ValidationError(
            "Cannot submit without approvers. Add at least one approver or release directly instead."
        )
    if event == RELEASE and facts.approver_count > 0:
        if facts.is_production or not facts.bypass_approval:
            raise ValidationError(
                "Document has approvers assigned; submit it for approval"
                + ("" if facts.is_production else " or explicitly bypass approval")
            )


def transition(current: str, event: str, actor: Actor, facts: Facts | None = None) -> str:
    """
    Return the status `event` moves a document to from `current`.

    Raises AuthorizationError if `actor` may not trigger the event,
    InvalidStateError if the event is not legal from `current`, and
    ValidationError if a precondition (approver count, bypass) fails.
    """
    if event not in EVENT_AUTHORITY:
        raise ValueError(f"Unknown lifecycle event: {event}")
    _authorize(event, actor)
    target = TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidStateError(current=current, attempted=event)
    _check_guards(event, facts or Facts())
    return target
