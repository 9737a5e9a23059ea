"""Error taxonomy shared by the services and the HTTP layer.

Every error carries the HTTP status it maps to and the message that is
safe to show to a client. Anything else (store exceptions, bugs) is
turned into a generic 500 by the app's error guard.
"""
from typing import Any, Dict, Optional


class ApiError(Exception):
    status_code = 500
    kind = "Internal"

    def __init__(self, message: str, *, headers: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.headers = headers or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "error": self.kind}


class ValidationFailed(ApiError):
    status_code = 400
    kind = "ValidationError"


class Conflict(ApiError):
    """A write collided with a unique constraint on `field`."""
    status_code = 400
    kind = "Conflict"

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"{field} already in use")
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["field"] = self.field
        return d


class Unauthenticated(ApiError):
    """Authentication failed.

    `reason` is for logs only (missing, expired, invalid_signature,
    malformed, unknown_user, bad_credentials); it never reaches the client.
    """
    status_code = 401
    kind = "Unauthenticated"

    def __init__(self, message: str, reason: str = "unknown"):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})
        self.reason = reason


class Forbidden(ApiError):
    status_code = 403
    kind = "Forbidden"


class NotFound(ApiError):
    status_code = 404
    kind = "NotFound"


class RateLimited(ApiError):
    status_code = 429
    kind = "RateLimited"

    def __init__(self, message: str, retry_after: int):
        super().__init__(message, headers={"Retry-After": str(retry_after)})
        self.retry_after = retry_after


class Internal(ApiError):
    status_code = 500
    kind = "Internal"
