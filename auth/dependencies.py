"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two independent checks, in order:
  1. Authorization: Bearer <access JWT> -- required. Signature + expiry +
     typ=access, then the account is reloaded so role changes apply at once.
  2. X-Session-Token: <opaque session token> -- optional. When present it must
     name a live (non-revoked, unexpired) session of the same account, so a
     revoked device is locked out even while its access JWT is still valid.
     Stateless clients simply omit the header.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.service import AuthService
from auth.tokens import decode_access_token

SESSION_HEADER = "X-Session-Token"


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request from its Bearer JWT. Returns None on any failure.

    Never raises and does not look at X-Session-Token -- callers that need a
    hard 401 and session enforcement use get_current_user().
    """
    token = _bearer_token(request)
    if not token:
        return None
    payload = decode_access_token(token)
    if payload is None:
        return None
    service: AuthService = request.app.state.auth_service
    return service.users.get_by_id(payload["user_id"])


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    raw_session = request.headers.get(SESSION_HEADER)
    if raw_session:
        service: AuthService = request.app.state.auth_service
        # AuthenticationError is rendered as 401 session_revoked by api/main.py.
        request.state.session = service.resolve_session(raw_session, user)
    else:
        request.state.session = None
    return user
