import pytest

from app.doccontrol.errors import AuthorizationError, InvalidStateError, ValidationError
from app.doccontrol.modules.document_control.lifecycle import (
    CONSENSUS,
    DELETE,
    DELETED,
    EDIT,
    REJECT,
    RELEASE,
    SUBMIT,
    SUPERSEDE,
    SYSTEM_ACTOR,
    WITHDRAW,
    Actor,
    Facts,
    allowed_events,
    transition,
)
from app.doccontrol.modules.document_control.models import DRAFT, IN_APPROVAL, OBSOLETE, RELEASED

CREATOR = Actor(is_creator=True)
APPROVER = Actor(is_assigned_approver=True)
NOBODY = Actor()


def test_happy_path_through_approval():
    assert transition(DRAFT, SUBMIT, CREATOR, Facts(approver_count=2)) == IN_APPROVAL
    assert transition(IN_APPROVAL, CONSENSUS, APPROVER) == RELEASED
    assert transition(RELEASED, SUPERSEDE, SYSTEM_ACTOR) == OBSOLETE


def test_reject_and_withdraw_return_to_draft():
    assert transition(IN_APPROVAL, REJECT, APPROVER) == DRAFT
    assert transition(IN_APPROVAL, WITHDRAW, CREATOR) == DRAFT


def test_submit_requires_an_approver():
    with pytest.raises(ValidationError):
        transition(DRAFT, SUBMIT, CREATOR, Facts(approver_count=0))


def test_direct_release_without_approvers():
    assert transition(DRAFT, RELEASE, CREATOR, Facts(approver_count=0)) == RELEASED


def test_direct_release_with_approvers_needs_explicit_bypass():
    with pytest.raises(ValidationError):
        transition(DRAFT, RELEASE, CREATOR, Facts(approver_count=1))
    assert transition(DRAFT, RELEASE, CREATOR, Facts(approver_count=1, bypass_approval=True)) == RELEASED


def test_production_documents_cannot_bypass_their_approvers():
    with pytest.raises(ValidationError):
        transition(DRAFT, RELEASE, CREATOR, Facts(approver_count=1, is_production=True, bypass_approval=True))


def test_delete_only_from_draft():
    assert transition(DRAFT, DELETE, CREATOR) == DELETED
    with pytest.raises(InvalidStateError) as e:
        transition(RELEASED, DELETE, CREATOR)
    assert e.value.current == RELEASED
    assert e.value.attempted == DELETE


def test_edit_only_in_draft():
    assert transition(DRAFT, EDIT, CREATOR) == DRAFT
    for state in (IN_APPROVAL, RELEASED, OBSOLETE):
        with pytest.raises(InvalidStateError):
            transition(state, EDIT, CREATOR)


def test_obsolete_is_terminal():
    assert allowed_events(OBSOLETE) == []
    with pytest.raises(InvalidStateError):
        transition(OBSOLETE, SUBMIT, CREATOR, Facts(approver_count=1))


@pytest.mark.parametrize("event", [SUBMIT, RELEASE, WITHDRAW, DELETE, EDIT])
def test_creator_only_events(event):
    with pytest.raises(AuthorizationError):
        transition(DRAFT, event, NOBODY, Facts(approver_count=1))
    with pytest.raises(AuthorizationError):
        transition(DRAFT, event, APPROVER, Facts(approver_count=1))


@pytest.mark.parametrize("event", [CONSENSUS, REJECT])
def test_approver_only_events(event):
    with pytest.raises(AuthorizationError):
        transition(IN_APPROVAL, event, CREATOR)


def test_only_the_system_obsoletes():
    with pytest.raises(AuthorizationError):
        transition(RELEASED, SUPERSEDE, CREATOR)


def test_authorization_is_checked_before_state():
    # an outsider learns nothing about the document's status
    with pytest.raises(AuthorizationError):
        transition(RELEASED, SUBMIT, NOBODY)


def test_unknown_event():
    with pytest.raises(ValueError):
        transition(DRAFT, "publish", CREATOR)
