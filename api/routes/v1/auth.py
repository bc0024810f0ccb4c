"""
api/routes/v1/auth.py -- Account authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup               -- create account; tokens issued immediately
  POST /api/v1/auth/login                -- password step; final tokens or 2FA challenge
  POST /api/v1/auth/verify-email         -- consume single-use verification token
  POST /api/v1/auth/resend-verification  -- new verification link
  POST /api/v1/auth/forgot-password      -- reset link; always generic 200
  POST /api/v1/auth/reset-password       -- consume single-use reset token
  POST /api/v1/auth/refresh-token        -- refresh JWT -> new access JWT
  GET  /api/v1/auth/me                   -- current account (requires auth)
  POST /api/v1/auth/logout               -- revoke the presented session (requires auth)
  GET  /api/v1/csrf-token                -- current CSRF token (public)

Security:
  [H2] login/signup/forgot/reset are rate-limited per IP (slowapi). The
       per-account lockout in AuthService.login is the primary brute-force
       control; the rate limit is an outer layer.
  [C1] AuthService.login equalizes bcrypt timing for unknown emails.
  [M5] Cache-Control: no-store on every response that carries tokens.
  CSRF: enforced by api/csrf.py middleware on every POST, including login.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    CsrfTokenResponse,
    EmailRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    ResetPasswordRequest,
    SignupRequest,
    TokenRequest,
    TwoFactorChallenge,
    UserResponse,
)
from auth.dependencies import get_auth_service, get_current_user
from auth.models import LoginResult, User
from auth.service import AuthService
from core.config import get_settings

# Auth policy:
# - POST /auth/signup, /auth/login, /auth/verify-email, /auth/resend-verification,
#   /auth/forgot-password, /auth/reset-password, /auth/refresh-token: public
# - GET  /csrf-token: public -- clients call it before their first POST
# - GET  /auth/me, POST /auth/logout: requires auth (get_current_user)
router = APIRouter()

_settings = get_settings()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def client_info(request: Request) -> tuple[str | None, str | None]:
    """(device descriptor, origin address) recorded on new sessions."""
    device = request.headers.get("User-Agent")
    ip = request.client.host if request.client else None
    return device, ip


def token_response(result: LoginResult, message: str, status_code: int = 200) -> JSONResponse:
    """Render a LoginResult as AuthResponse or TwoFactorChallenge with no-store [M5]."""
    if result.require_2fa:
        body = TwoFactorChallenge(temp_token=result.temp_token, user_id=result.user.id)
    else:
        body = AuthResponse(
            message=message,
            user=UserResponse.from_user(result.user),
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
            session_id=result.session_id,
            session_token=result.session_token,
        )
    resp = JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True, exclude_none=True))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.signup_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
def signup(request: Request, body: SignupRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Register an account. 403 for the reserved admin email, 409 for duplicates."""
    result = service.signup(body.email, body.password, body.full_name, body.department)
    return token_response(
        result,
        "User registered successfully. Please check your email to verify your account.",
        status_code=201,
    )


@limiter.limit(_settings.login_rate_limit)  # [H2]
@router.post("/auth/login", response_model=AuthResponse | TwoFactorChallenge)
def login(request: Request, body: LoginRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Password login.

    200 with final tokens, or 200 {require2fa, tempToken, userId} for 2FA
    accounts. 401 invalid_credentials (same code for unknown email and wrong
    password), 423 account_locked.
    """
    device, ip = client_info(request)
    result = service.login(body.email, body.password, device_info=device, ip_address=ip)
    return token_response(result, "Login successful")


@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(body: TokenRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    service.verify_email(body.token)
    return MessageResponse(message="Email verified successfully. You can now log in.")


@limiter.limit(_settings.sensitive_rate_limit)  # [H2]
@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(
    request: Request, body: EmailRequest, service: AuthService = Depends(get_auth_service)
) -> MessageResponse:
    return MessageResponse(message=service.resend_verification(body.email))


@limiter.limit(_settings.sensitive_rate_limit)  # [H2]
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(
    request: Request, body: EmailRequest, service: AuthService = Depends(get_auth_service)
) -> MessageResponse:
    """Always the same generic answer, whether or not the email is registered."""
    return MessageResponse(message=service.forgot_password(body.email))


@limiter.limit(_settings.sensitive_rate_limit)  # [H2]
@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    request: Request, body: ResetPasswordRequest, service: AuthService = Depends(get_auth_service)
) -> MessageResponse:
    service.reset_password(body.token, body.new_password)
    return MessageResponse(message="Password reset successfully. You can now log in with your new password.")


@router.post("/auth/refresh-token", response_model=RefreshResponse)
def refresh_token(body: RefreshRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """401 invalid_refresh_token for forged/garbage tokens, 401 refresh_token_expired for expired ones."""
    access_token = service.refresh(body.refresh_token)
    resp = JSONResponse(content=RefreshResponse(access_token=access_token).model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/csrf-token", response_model=CsrfTokenResponse)
def csrf_token(request: Request) -> CsrfTokenResponse:
    """Return the token the CSRF middleware bound to this request (minting it if needed)."""
    return CsrfTokenResponse(csrf_token=request.state.csrf_token)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the currently authenticated account."""
    return MeResponse(user=UserResponse.from_user(current_user))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke the session named by X-Session-Token, if any.

    JWTs cannot be recalled; clients drop them. Stateless clients (no session
    header) get the same 200.
    """
    session = request.state.session
    if session is not None:
        service.revoke_session(current_user, session.id)
    return MessageResponse(message="Logged out.")
