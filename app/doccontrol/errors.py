"""
Typed errors raised by the document-control engine.

Engine functions raise these; the JSON blueprint maps every subclass of
DocControlError to a structured response with a matching HTTP status, so
callers never see a raw traceback.

Usage:
    from app.doccontrol.errors import InvalidStateError, NotFoundError

    raise NotFoundError("Document", doc_id)
    raise InvalidStateError(current="Draft", attempted="release", message="Source must be Released")
"""

from __future__ import annotations

from typing import Any


class DocControlError(Exception):
    code = "error"
    http_status = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(DocControlError):
    """Input is malformed or violates a business rule (bad prefix, bad project code, ...)."""

    code = "validation_error"
    http_status = 422


class FormatError(ValidationError):
    """A version label does not match the pattern for its class, or its ceiling was reached."""

    code = "format_error"


class AuthorizationError(DocControlError):
    code = "not_authorized"
    http_status = 403


class InvalidStateError(DocControlError):
    """
    An operation was attempted from a status that does not allow it.

    Recoverable and user-facing: carries the current status and the attempted
    transition so the caller can explain what happened.
    """

    code = "invalid_state"
    http_status = 409

    def __init__(self, current: str, attempted: str, message: str | None = None) -> None:
        self.current = current
        self.attempted = attempted
        super().__init__(
            message or f"Cannot {attempted} a document in status {current!r}",
            details={"current": current, "attempted": attempted},
        )


class AlreadyDecidedError(DocControlError):
    code = "already_decided"
    http_status = 409


class ConflictError(DocControlError):
    """Uniqueness or concurrent-update violation. The caller may retry with fresh data."""

    code = "conflict"
    http_status = 409


class NotFoundError(DocControlError):
    """
    The referenced entity does not exist in the caller's tenant.

    Cross-tenant lookups also raise this, so a caller cannot enumerate ids
    owned by another tenant.
    """

    code = "not_found"
    http_status = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        super().__init__(msg + " not found")


class NotConfiguredError(DocControlError):
    """A best-effort dependency (mail, virus scanning) has no configuration."""

    code = "not_configured"
    http_status = 503
