"""Domain errors raised by the access services and rendered by the API layer.

Every error carries an HTTP status, a short machine-readable ``code`` and an
optional ``detail`` dict (for conflicts, the current state of the request so
the caller can refresh its view).
"""
from typing import Any


class AccessError(Exception):
    status_code = 400
    default_code = "error"

    def __init__(self, message: str, code: str | None = None, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, "detail": self.detail}


class ValidationError(AccessError):
    status_code = 422
    default_code = "invalid"


class NotFoundError(AccessError):
    status_code = 404
    default_code = "not_found"


class ForbiddenError(AccessError):
    status_code = 403
    default_code = "not_owner"


class ConflictError(AccessError):
    status_code = 409
    default_code = "conflict"


class ExpiredError(AccessError):
    status_code = 401
    default_code = "expired"


class UpstreamError(AccessError):
    status_code = 503
    default_code = "upstream_unavailable"
