"""
auth/errors.py -- Exception taxonomy for the auth service.

Every expected, user-facing failure is raised as an AuthError subclass that
carries its HTTP status, a stable machine-readable code, and optional meta.
api/main.py turns these into the standard {"error": {...}} envelope, so the
service layer never imports FastAPI.

Layer rule: no imports from api/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for auth-layer errors mapped to HTTP responses."""

    status_code: int = 400
    code: str = "validation_error"

    def __init__(self, message: str, *, code: str | None = None, meta: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.meta = meta or {}


class ValidationError(AuthError):
    """Request is well-formed but semantically invalid (400)."""

    status_code = 400
    code = "validation_error"


class AuthenticationError(AuthError):
    """Credentials missing, wrong, or unusable (401)."""

    status_code = 401
    code = "unauthorized"


class TokenInvalidError(AuthenticationError):
    """Signed token is malformed, has a bad signature, or is the wrong kind."""

    code = "token_invalid"


class TokenExpiredError(AuthenticationError):
    """Signed token verified correctly but its exp claim has passed."""

    code = "token_expired"


class ForbiddenError(AuthError):
    status_code = 403
    code = "forbidden"


class CsrfError(ForbiddenError):
    """Double-submit check failed. code is CSRF_TOKEN_MISSING or CSRF_TOKEN_INVALID."""

    code = "CSRF_TOKEN_INVALID"


class NotFoundError(AuthError):
    """Resource absent -- also used for other users' resources to avoid existence leaks (404)."""

    status_code = 404
    code = "not_found"


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"


class LockedError(AuthError):
    """Account is locked out (423). meta carries minutesRemaining and lockedUntil."""

    status_code = 423
    code = "account_locked"


class RateLimitedError(AuthError):
    status_code = 429
    code = "rate_limited"


class ServerError(AuthError):
    status_code = 500
    code = "internal_error"


__all__ = [
    "AuthError",
    "ValidationError",
    "AuthenticationError",
    "TokenInvalidError",
    "TokenExpiredError",
    "ForbiddenError",
    "CsrfError",
    "NotFoundError",
    "ConflictError",
    "LockedError",
    "RateLimitedError",
    "ServerError",
]
