"""
Best-effort e-mail notifications for workflow events.

Engine code never sends mail directly: it queues a notification on the
session with `enqueue`, and the queue is dispatched only after the session
commits. A rollback discards the queue. Dispatch failures are logged and
never reach the caller, because the state change they describe already
committed.
"""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.mime.text import MIMEText
from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import Session, sessionmaker

from app.doccontrol.errors import NotConfiguredError

logger = logging.getLogger(__name__)

APPROVAL_REQUESTED = "approval_requested"
DOCUMENT_APPROVED = "document_approved"
DOCUMENT_REJECTED = "document_rejected"
DOCUMENT_RELEASED = "document_released"

_QUEUE_KEY = "pending_notifications"

_SUBJECTS = {
    APPROVAL_REQUESTED: "Approval requested: {label}",
    DOCUMENT_APPROVED: "{label} approved by {actor_email}",
    DOCUMENT_REJECTED: "{label} was rejected",
    DOCUMENT_RELEASED: "{label} has been released",
}


@dataclass(frozen=True)
class Notification:
    event: str
    recipients: tuple[str, ...]
    payload: dict[str, Any] = field(default_factory=dict)


class Notifier:
    def notify(self, event: str, recipients: list[str], payload: dict[str, Any]) -> None:
        raise NotImplementedError


class UnconfiguredNotifier(Notifier):
    def notify(self, event: str, recipients: list[str], payload: dict[str, Any]) -> None:
        raise NotConfiguredError("Email notifications are not configured (SMTP_SERVER / EMAIL_FROM missing)")


@dataclass(frozen=True)
class SmtpNotifier(Notifier):
    server: str
    email_from: str
    port: int | None = None
    use_tls: bool = True
    username: str = ""
    password: str = ""

    def _render(self, event: str, payload: dict[str, Any]) -> tuple[str, str]:
        subject = _SUBJECTS.get(event, "{label}: " + event).format_map(_Defaulting(payload))
        lines = [subject, ""]
        for key in ("title", "comments", "rejection_reason", "released_at"):
            if payload.get(key):
                lines.append(f"{key.replace('_', ' ').capitalize()}: {payload[key]}")
        return subject, "\n".join(lines)

    def notify(self, event: str, recipients: list[str], payload: dict[str, Any]) -> None:
        subject, body = self._render(event, payload)
        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = self.email_from
        msg["To"] = ", ".join(recipients)

        server = smtplib.SMTP(self.server, self.port) if self.port else smtplib.SMTP(self.server)
        try:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)
        finally:
            server.quit()
        logger.info("Sent %s email to %d recipient(s): %s", event, len(recipients), subject)


class _Defaulting(dict):
    def __missing__(self, key: str) -> str:
        return ""


def notifier_from_config(config: dict) -> Notifier:
    server = (config.get("SMTP_SERVER") or "").strip()
    email_from = (config.get("EMAIL_FROM") or "").strip()
    if not server or not email_from:
        return UnconfiguredNotifier()
    port = (str(config.get("SMTP_PORT") or "")).strip()
    return SmtpNotifier(
        server=server,
        email_from=email_from,
        port=int(port) if port else None,
        use_tls=bool(config.get("SMTP_USE_TLS", True)),
        username=(config.get("SMTP_USERNAME") or "").strip(),
        password=(config.get("SMTP_PASSWORD") or "").strip(),
    )


def enqueue(s: Session, event_name: str, recipients: list[str], payload: dict[str, Any]) -> None:
    """Queue a notification to be sent once `s` commits."""
    unique = tuple(dict.fromkeys(r for r in recipients if r))
    if not unique:
        return
    s.info.setdefault(_QUEUE_KEY, []).append(Notification(event_name, unique, payload))


def pending(s: Session) -> list[Notification]:
    return list(s.info.get(_QUEUE_KEY, []))


def dispatch(notifier: Notifier | None, notifications: list[Notification]) -> None:
    for n in notifications:
        if notifier is None:
            logger.warning("No notifier bound to session; dropping %s notification", n.event)
            continue
        try:
            notifier.notify(n.event, list(n.recipients), dict(n.payload))
        except NotConfiguredError as e:
            logger.warning("Notification %s skipped: %s", n.event, e)
        except Exception:
            logger.exception("Notification %s to %s failed", n.event, ", ".join(n.recipients))


def _after_commit(s: Session) -> None:
    # also fired when a SAVEPOINT is released; only the outermost commit sends
    if s.in_nested_transaction():
        return
    queued = s.info.pop(_QUEUE_KEY, [])
    if queued:
        dispatch(s.info.get("notifier"), queued)


def _after_rollback(s: Session) -> None:
    # a savepoint rollback (e.g. a failed audit write) leaves the outer work intact
    if s.in_nested_transaction():
        return
    dropped = s.info.pop(_QUEUE_KEY, [])
    if dropped:
        logger.info("Discarded %d queued notification(s) after rollback", len(dropped))


def install_dispatch_hooks(target: sessionmaker | type[Session]) -> None:
    event.listen(target, "after_commit", _after_commit)
    event.listen(target, "after_rollback", _after_rollback)
