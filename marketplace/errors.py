"""Domain error kinds raised by the service layer.

Each kind is an ``HTTPException`` so routers let them propagate untouched;
``main.py`` renders them as ``{"detail": ..., "error": kind}``.
"""

from fastapi import HTTPException


class MarketplaceError(HTTPException):
    status_code: int = 400
    kind: str = "error"

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=self.status_code, detail=detail)


class NotFound(MarketplaceError):
    status_code = 404
    kind = "not_found"


class Unauthorized(MarketplaceError):
    status_code = 401
    kind = "unauthorized"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.headers = {"WWW-Authenticate": "Bearer"}


class Forbidden(MarketplaceError):
    status_code = 403
    kind = "forbidden"


class InvalidState(MarketplaceError):
    """Entity is not in a status that permits the action."""

    kind = "invalid_state"


class InvalidOperation(MarketplaceError):
    """Action is structurally disallowed for this caller, e.g. self-proposal."""

    kind = "invalid_operation"


class Conflict(MarketplaceError):
    """Uniqueness or race violation."""

    kind = "conflict"


class ValidationFailed(MarketplaceError):
    kind = "validation_error"


class LimitExceeded(MarketplaceError):
    kind = "limit_exceeded"


class DependencyFailure(MarketplaceError):
    """A best-effort collaborator (email, blob storage) failed."""

    status_code = 502
    kind = "dependency_failure"
