"""Error taxonomy shared by the donation flow and the moderation engine."""
from __future__ import annotations

from typing import Optional


class FundizenError(Exception):
    """Base class. ``kind`` is a stable machine-readable code."""

    kind = "ERROR"
    status_code = 500

    def __init__(self, message: str, kind: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if kind:
            self.kind = kind
        if status_code:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.message}


class ValidationError(FundizenError):
    """Input rejected locally; never sent to the backend."""

    kind = "VALIDATION"
    status_code = 422


class IllegalTransitionError(FundizenError):
    kind = "ILLEGAL_TRANSITION"
    status_code = 409


class GatewayError(FundizenError):
    """Payment gateway unreachable, timed out, or refused the request."""

    kind = "GATEWAY_UNAVAILABLE"
    status_code = 502


class ConfirmationError(FundizenError):
    kind = "INVALID_CALLBACK"
    status_code = 400


class BackendError(FundizenError):
    """Backend API Gateway rejected a request; message is passed through verbatim."""

    kind = "BACKEND_REJECTED"
    status_code = 502


class AuthorizationError(FundizenError):
    kind = "UNAUTHORIZED"
    status_code = 403


class ActionCancelled(FundizenError):
    """The operator declined the confirmation prompt."""

    kind = "CANCELLED"
    status_code = 409


INVALID_AMOUNT = "INVALID_AMOUNT"
INVALID_EMAIL = "INVALID_EMAIL"
MISSING_FIELD = "MISSING_FIELD"
FIELD_TOO_LONG = "FIELD_TOO_LONG"
METHOD_DISABLED = "METHOD_DISABLED"
INVALID_VALUE = "INVALID_VALUE"
CAMPAIGN_CLOSED = "CAMPAIGN_CLOSED"
GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
PAYMENT_REJECTED = "PAYMENT_REJECTED"
TIMEOUT = "TIMEOUT"
INVALID_CALLBACK = "INVALID_CALLBACK"
SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
BACKEND_REJECTED = "BACKEND_REJECTED"
BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
