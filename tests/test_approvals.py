import warnings

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SADeprecationWarning
from werkzeug.security import generate_password_hash

from app.doccontrol import create_app, notifications
from app.doccontrol.audit import audit_details, document_history
from app.doccontrol.db import session_scope
from app.doccontrol.errors import (
    AlreadyDecidedError,
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.doccontrol.models import Base, Tenant, User
from app.doccontrol.modules.document_control import repository, service
from app.doccontrol.modules.document_control.models import (
    APPROVED,
    DRAFT,
    IN_APPROVAL,
    OBSOLETE,
    PENDING,
    REJECTED,
    RELEASED,
    Approver,
    Document,
    DocumentType,
)
from app.doccontrol.notifications import (
    APPROVAL_REQUESTED,
    DOCUMENT_APPROVED,
    DOCUMENT_REJECTED,
    DOCUMENT_RELEASED,
    Notifier,
)

APPROVERS = ["a@acme.test", "b@acme.test", "c@acme.test"]


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def notify(self, event, recipients, payload):
        self.sent.append((event, list(recipients), dict(payload)))

    def events(self):
        return [e for e, _, _ in self.sent]


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def app(tmp_path, monkeypatch, notifier):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    app.extensions["sqlalchemy_sessionmaker"].configure(info={"notifier": notifier})

    with session_scope(app) as s:
        acme, other = Tenant(name="Acme"), Tenant(name="Other")
        s.add_all([acme, other])
        s.flush()
        for email in ["creator@acme.test", "outsider@acme.test", *APPROVERS]:
            s.add(User(tenant_id=acme.id, email=email, password_hash=generate_password_hash("pw")))
        s.add(User(tenant_id=other.id, email="stranger@other.test", password_hash=generate_password_hash("pw")))
        s.add(DocumentType(tenant_id=acme.id, name="Work Instruction", prefix="WI", next_number=1, is_active=True))
    return app


def _user(s, email):
    return s.execute(select(User).where(User.email == email)).scalar_one()


def _draft(app, approvers=()):
    with session_scope(app) as s:
        creator = _user(s, "creator@acme.test")
        wi = s.execute(select(DocumentType).where(DocumentType.prefix == "WI")).scalar_one()
        doc = service.create_document(s, document_type_id=wi.id, title="Assembly steps", actor=creator)
        for email in approvers:
            service.add_approver(s, doc.id, user_id=_user(s, email).id, actor=creator)
        return doc.id


def _in_approval(app, approvers=APPROVERS):
    doc_id = _draft(app, approvers)
    with session_scope(app) as s:
        service.submit_for_approval(s, doc_id, actor=_user(s, "creator@acme.test"))
    return doc_id, _approver_ids(app, doc_id)


def _approver_ids(app, doc_id):
    with session_scope(app) as s:
        rows = s.execute(select(Approver).where(Approver.document_id == doc_id)).scalars()
        return {a.user_email: a.id for a in rows}


def _decide(app, doc_id, approver_id, email, decision=APPROVED, comments=None):
    with session_scope(app) as s:
        return service.record_approval_decision(s, doc_id, approver_id, decision, comments, actor=_user(s, email))


def _state(app, doc_id):
    with session_scope(app) as s:
        doc = s.get(Document, doc_id)
        rows = s.execute(select(Approver).where(Approver.document_id == doc_id).order_by(Approver.id)).scalars()
        return doc.status, [(a.status, a.comments, a.action_date) for a in rows]


def test_unanimity_releases_only_on_the_last_approval(app):
    doc_id, ids = _in_approval(app)

    assert _decide(app, doc_id, ids["a@acme.test"], "a@acme.test") is False
    assert _decide(app, doc_id, ids["b@acme.test"], "b@acme.test", comments="Looks good") is False
    status, rows = _state(app, doc_id)
    assert status == IN_APPROVAL
    assert [r[0] for r in rows] == [APPROVED, APPROVED, PENDING]

    assert _decide(app, doc_id, ids["c@acme.test"], "c@acme.test") is True
    with session_scope(app) as s:
        doc = s.get(Document, doc_id)
        assert doc.status == RELEASED
        assert doc.released_at is not None
        assert doc.released_by_user_id == _user(s, "c@acme.test").id


def test_rejection_returns_to_draft_and_resets_every_approver(app):
    doc_id, ids = _in_approval(app)
    _decide(app, doc_id, ids["a@acme.test"], "a@acme.test")
    _decide(app, doc_id, ids["b@acme.test"], "b@acme.test")

    assert _decide(app, doc_id, ids["c@acme.test"], "c@acme.test", REJECTED, "Missing torque spec") is False

    status, rows = _state(app, doc_id)
    assert status == DRAFT
    assert rows == [(PENDING, None, None)] * 3

    with session_scope(app) as s:
        rejected = [ev for ev in document_history(s, doc_id) if ev.action == "rejected"]
        assert len(rejected) == 1
        assert rejected[0].reason == "Missing torque spec"
        assert audit_details(rejected[0])["approver_email"] == "c@acme.test"


def test_resubmission_requires_a_full_re_review(app):
    doc_id, ids = _in_approval(app)
    _decide(app, doc_id, ids["a@acme.test"], "a@acme.test")
    with session_scope(app) as s:
        service.withdraw_from_approval(s, doc_id, actor=_user(s, "creator@acme.test"))
    assert _state(app, doc_id)[0] == DRAFT

    with session_scope(app) as s:
        service.submit_for_approval(s, doc_id, actor=_user(s, "creator@acme.test"))
    status, rows = _state(app, doc_id)
    assert status == IN_APPROVAL
    assert [r[0] for r in rows] == [PENDING] * 3


def test_deciding_twice_is_already_decided_and_changes_nothing(app):
    doc_id, ids = _in_approval(app)
    _decide(app, doc_id, ids["a@acme.test"], "a@acme.test")

    with pytest.raises(AlreadyDecidedError):
        _decide(app, doc_id, ids["a@acme.test"], "a@acme.test")
    status, rows = _state(app, doc_id)
    assert status == IN_APPROVAL
    assert [r[0] for r in rows] == [APPROVED, PENDING, PENDING]


def test_only_the_assigned_approver_may_decide(app):
    doc_id, ids = _in_approval(app)
    with pytest.raises(AuthorizationError):
        _decide(app, doc_id, ids["a@acme.test"], "outsider@acme.test")
    with pytest.raises(AuthorizationError):
        _decide(app, doc_id, ids["a@acme.test"], "b@acme.test")
    with pytest.raises(AuthorizationError):
        _decide(app, doc_id, ids["a@acme.test"], "creator@acme.test")
    assert _state(app, doc_id)[1][0][0] == PENDING


def test_decisions_need_a_document_in_approval(app):
    doc_id, ids = _in_approval(app)
    with session_scope(app) as s:
        service.withdraw_from_approval(s, doc_id, actor=_user(s, "creator@acme.test"))
    with pytest.raises(InvalidStateError) as e:
        _decide(app, doc_id, ids["a@acme.test"], "a@acme.test")
    assert e.value.current == DRAFT


def test_rejection_needs_a_reason_within_limits(app):
    doc_id, ids = _in_approval(app)
    with pytest.raises(ValidationError):
        _decide(app, doc_id, ids["a@acme.test"], "a@acme.test", REJECTED, "   ")
    with pytest.raises(ValidationError):
        _decide(app, doc_id, ids["a@acme.test"], "a@acme.test", REJECTED, "x" * 1001)
    with pytest.raises(ValidationError):
        _decide(app, doc_id, ids["a@acme.test"], "a@acme.test", "Maybe")
    assert _state(app, doc_id)[0] == IN_APPROVAL


def test_submit_without_approvers_is_rejected(app):
    doc_id = _draft(app)
    with pytest.raises(ValidationError):
        with session_scope(app) as s:
            service.submit_for_approval(s, doc_id, actor=_user(s, "creator@acme.test"))


def test_approver_management_rules(app):
    doc_id = _draft(app, ["a@acme.test"])
    with session_scope(app) as s:
        creator = _user(s, "creator@acme.test")
        with pytest.raises(ConflictError):
            service.add_approver(s, doc_id, user_id=_user(s, "a@acme.test").id, actor=creator)
    with session_scope(app) as s:
        with pytest.raises(NotFoundError):
            service.add_approver(
                s, doc_id, user_id=_user(s, "stranger@other.test").id, actor=_user(s, "creator@acme.test")
            )
    with session_scope(app) as s:
        with pytest.raises(AuthorizationError):
            service.add_approver(s, doc_id, user_id=_user(s, "b@acme.test").id, actor=_user(s, "outsider@acme.test"))

    ids = _approver_ids(app, doc_id)
    with session_scope(app) as s:
        service.remove_approver(s, doc_id, ids["a@acme.test"], actor=_user(s, "creator@acme.test"))
    assert _approver_ids(app, doc_id) == {}


def test_approvers_are_frozen_once_submitted(app):
    doc_id, ids = _in_approval(app, ["a@acme.test"])
    with pytest.raises(InvalidStateError):
        with session_scope(app) as s:
            service.add_approver(s, doc_id, user_id=_user(s, "b@acme.test").id, actor=_user(s, "creator@acme.test"))


def test_pending_approvals_query(app):
    doc_id, ids = _in_approval(app)
    with session_scope(app) as s:
        rows = service.pending_approvals(s, actor=_user(s, "a@acme.test"))
        assert [r.document_id for r in rows] == [doc_id]
    _decide(app, doc_id, ids["a@acme.test"], "a@acme.test")
    with session_scope(app) as s:
        assert service.pending_approvals(s, actor=_user(s, "a@acme.test")) == []


def test_workflow_notifications_go_out_after_commit(app, notifier):
    doc_id, ids = _in_approval(app, ["a@acme.test", "b@acme.test"])
    event, recipients, payload = notifier.sent[-1]
    assert event == APPROVAL_REQUESTED
    assert sorted(recipients) == ["a@acme.test", "b@acme.test"]
    assert payload["label"] == "WI-00001vA"

    _decide(app, doc_id, ids["a@acme.test"], "a@acme.test")
    assert notifier.sent[-1][0] == DOCUMENT_APPROVED
    assert notifier.sent[-1][1] == ["creator@acme.test"]

    _decide(app, doc_id, ids["b@acme.test"], "b@acme.test")
    event, recipients, _ = notifier.sent[-1]
    assert event == DOCUMENT_RELEASED
    assert set(recipients) == {"creator@acme.test", "a@acme.test", "b@acme.test"}


def test_rejection_notifies_the_creator(app, notifier):
    doc_id, ids = _in_approval(app, ["a@acme.test"])
    _decide(app, doc_id, ids["a@acme.test"], "a@acme.test", REJECTED, "Wrong template")
    event, recipients, payload = notifier.sent[-1]
    assert (event, recipients) == (DOCUMENT_REJECTED, ["creator@acme.test"])
    assert payload["rejection_reason"] == "Wrong template"


def test_rolled_back_work_sends_nothing(app, notifier):
    doc_id = _draft(app, ["a@acme.test"])
    before = len(notifier.sent)
    with pytest.raises(RuntimeError):
        with session_scope(app) as s:
            service.submit_for_approval(s, doc_id, actor=_user(s, "creator@acme.test"))
            raise RuntimeError("request failed after submit")
    assert len(notifier.sent) == before
    assert _state(app, doc_id)[0] == DRAFT


def test_stale_document_write_is_a_conflict(app):
    doc_id, _ = _in_approval(app, ["a@acme.test"])
    sm = app.extensions["sqlalchemy_sessionmaker"]
    s1 = sm()
    try:
        doc = repository.get_document(s1, doc_id, tenant_id=_tenant_id(s1))
        with session_scope(app) as s2:
            other = s2.get(Document, doc_id)
            other.title = "Changed elsewhere"
        doc.title = "Changed here"
        with pytest.raises(ConflictError):
            repository.flush(s1)
    finally:
        s1.close()


def _tenant_id(s):
    return s.execute(select(Tenant.id).where(Tenant.name == "Acme")).scalar_one()


@pytest.mark.parametrize("approvers", [APPROVERS[:1], APPROVERS[:2], APPROVERS])
def test_submitted_status_survives_the_approver_reset(app, approvers):
    doc_id = _draft(app, approvers)
    with session_scope(app) as s:
        doc = service.submit_for_approval(s, doc_id, actor=_user(s, "creator@acme.test"))
        assert doc.status == IN_APPROVAL

    status, rows = _state(app, doc_id)
    assert status == IN_APPROVAL
    assert rows == [(PENDING, None, None)] * len(approvers)
    with session_scope(app) as s:
        assert [r.document_id for r in service.pending_approvals(s, actor=_user(s, approvers[0]))] == [doc_id]


def test_audit_savepoint_does_not_send_queued_notifications(app, notifier):
    doc_id = _draft(app, ["a@acme.test"])
    before = len(notifier.sent)
    with pytest.raises(RuntimeError):
        with session_scope(app) as s:
            notifications.enqueue(s, APPROVAL_REQUESTED, ["a@acme.test"], {"label": "WI-00001vA"})
            service.update_document(s, doc_id, title="Assembly steps, rev 2", actor=_user(s, "creator@acme.test"))
            assert len(notifier.sent) == before
            assert len(notifications.pending(s)) == 1
            raise RuntimeError("request failed after the audited edit")
    assert len(notifier.sent) == before
    with session_scope(app) as s:
        assert s.get(Document, doc_id).title == "Assembly steps"


def test_queued_notifications_go_out_once_after_the_outer_commit(app, notifier):
    doc_id = _draft(app, ["a@acme.test"])
    before = len(notifier.sent)
    with session_scope(app) as s:
        notifications.enqueue(s, APPROVAL_REQUESTED, ["a@acme.test"], {"label": "WI-00001vA"})
        service.update_document(s, doc_id, title="Assembly steps, rev 2", actor=_user(s, "creator@acme.test"))
        service.update_document(s, doc_id, description="Torque values added", actor=_user(s, "creator@acme.test"))
        assert len(notifier.sent) == before
    assert notifier.events()[before:] == [APPROVAL_REQUESTED]


def test_audit_writes_use_no_deprecated_session_api(app):
    doc_id = _draft(app)
    with warnings.catch_warnings():
        warnings.simplefilter("error", SADeprecationWarning)
        with session_scope(app) as s:
            service.update_document(s, doc_id, title="Assembly steps, rev 2", actor=_user(s, "creator@acme.test"))
    with session_scope(app) as s:
        assert [e.action for e in document_history(s, doc_id)][-1] == "updated"


def _race_decision(monkeypatch, app, doc_id, approver_id, email, decision=APPROVED, comments=None):
    """Commit a competing decision after the next decision has read its document, before it writes."""
    original = repository.get_approver
    fired = []

    def get_approver(s, document, aid):
        if not fired:
            fired.append(aid)
            _decide(app, doc_id, approver_id, email, decision, comments)
        return original(s, document, aid)

    monkeypatch.setattr(repository, "get_approver", get_approver)
    return fired


def test_concurrent_approvals_cannot_both_commit(app, monkeypatch):
    doc_id, ids = _in_approval(app, ["a@acme.test", "b@acme.test"])
    fired = _race_decision(monkeypatch, app, doc_id, ids["a@acme.test"], "a@acme.test")

    with pytest.raises(ConflictError):
        _decide(app, doc_id, ids["b@acme.test"], "b@acme.test")
    assert fired
    status, rows = _state(app, doc_id)
    assert status == IN_APPROVAL
    assert [r[0] for r in rows] == [APPROVED, PENDING]

    assert _decide(app, doc_id, ids["b@acme.test"], "b@acme.test") is True
    assert _state(app, doc_id)[0] == RELEASED


def test_approval_racing_a_rejection_loses(app, monkeypatch):
    doc_id, ids = _in_approval(app)
    _decide(app, doc_id, ids["a@acme.test"], "a@acme.test")
    _race_decision(monkeypatch, app, doc_id, ids["c@acme.test"], "c@acme.test", REJECTED, "Wrong revision")

    with pytest.raises(ConflictError):
        _decide(app, doc_id, ids["b@acme.test"], "b@acme.test")
    status, rows = _state(app, doc_id)
    assert status == DRAFT
    assert rows == [(PENDING, None, None)] * 3


def test_new_version_conflicts_with_an_existing_successor(app):
    doc_id = _draft(app)
    with session_scope(app) as s:
        service.release_directly(s, doc_id, actor=_user(s, "creator@acme.test"))
    with session_scope(app) as s:
        source = s.get(Document, doc_id)
        s.add(
            Document(
                tenant_id=source.tenant_id,
                document_type_id=source.document_type_id,
                document_number=source.document_number,
                version="vB",
                title=source.title,
                status=OBSOLETE,
                created_by_user_id=source.created_by_user_id,
            )
        )
    with session_scope(app) as s:
        with pytest.raises(ConflictError):
            service.create_new_version(s, doc_id, actor=_user(s, "creator@acme.test"))


def test_duplicate_document_version_is_a_conflict(app):
    doc_id = _draft(app)
    with session_scope(app) as s:
        source = s.get(Document, doc_id)
        s.add(
            Document(
                tenant_id=source.tenant_id,
                document_type_id=source.document_type_id,
                document_number=source.document_number,
                version=source.version,
                title="Same number, same version",
                status=DRAFT,
                created_by_user_id=source.created_by_user_id,
            )
        )
        with pytest.raises(ConflictError):
            repository.flush(s)
    with session_scope(app) as s:
        assert len(s.execute(select(Document)).scalars().all()) == 1
