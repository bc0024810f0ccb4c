"""
api/routes/v1/security.py -- Second factor and session management endpoints.

Routes:
  POST   /api/v1/auth/2fa/setup         -- pending secret + QR code (requires auth)
  POST   /api/v1/auth/2fa/enable        -- confirm pending secret with a code (requires auth)
  POST   /api/v1/auth/2fa/disable       -- turn 2FA off with a current code (requires auth)
  POST   /api/v1/auth/2fa/verify        -- second login step (public; temp token or userId)
  GET    /api/v1/auth/sessions          -- live sessions of the caller (requires auth)
  DELETE /api/v1/auth/sessions          -- revoke every session of the caller (requires auth)
  DELETE /api/v1/auth/sessions/{id}     -- revoke one session of the caller (requires auth)

Ownership: session ids are only ever resolved together with the caller's
user id, so another account's id answers 404 exactly like a missing one.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    CodeRequest,
    MessageResponse,
    RevokeAllResponse,
    SessionListResponse,
    SessionRow,
    TotpSetupResponse,
    TotpVerifyRequest,
)
from api.routes.v1.auth import client_info, token_response
from auth.dependencies import get_auth_service, get_current_user
from auth.models import User
from auth.service import AuthService
from core.config import get_settings

router = APIRouter()

_settings = get_settings()


# ---------------------------------------------------------------------------
# Two-factor authentication
# ---------------------------------------------------------------------------


@router.post("/auth/2fa/setup", response_model=TotpSetupResponse)
def setup_2fa(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Generate a pending secret. Calling it again replaces the pending secret."""
    setup = service.setup_totp(current_user)
    resp = JSONResponse(content=TotpSetupResponse.from_setup(setup).model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/2fa/enable", response_model=MessageResponse)
def enable_2fa(
    body: CodeRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.enable_totp(current_user, body.code)
    return MessageResponse(message="Two-factor authentication enabled successfully.")


@router.post("/auth/2fa/disable", response_model=MessageResponse)
def disable_2fa(
    body: CodeRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.disable_totp(current_user, body.code)
    return MessageResponse(message="Two-factor authentication disabled successfully.")


@limiter.limit(_settings.login_rate_limit)  # [H2] second login step shares the login budget
@router.post("/auth/2fa/verify", response_model=AuthResponse)
def verify_2fa(
    request: Request, body: TotpVerifyRequest, service: AuthService = Depends(get_auth_service)
) -> JSONResponse:
    """Exchange a 6-digit code (plus temp token or userId) for final tokens."""
    device, ip = client_info(request)
    result = service.verify_totp_login(
        body.code,
        user_id=body.user_id,
        temp_token=body.temp_token,
        device_info=device,
        ip_address=ip,
    )
    return token_response(result, "Login successful")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.get("/auth/sessions", response_model=SessionListResponse)
def list_sessions(
    request: Request,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> SessionListResponse:
    """Live sessions, most recently active first. The caller's own is flagged current."""
    current = request.state.session
    current_id = current.id if current is not None else None
    return SessionListResponse(
        sessions=[SessionRow.from_session(s, current_id) for s in service.list_sessions(current_user)]
    )


@router.delete("/auth/sessions", response_model=RevokeAllResponse)
def revoke_all_sessions(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> RevokeAllResponse:
    count = service.revoke_all_sessions(current_user)
    return RevokeAllResponse(message=f"Logged out from {count} session(s).", count=count)


@router.delete("/auth/sessions/{session_id}", response_model=MessageResponse)
def revoke_session(
    session_id: int,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """404 not_found when the id is unknown, revoked already, or someone else's."""
    service.revoke_session(current_user, session_id)
    return MessageResponse(message="Session revoked successfully.")
