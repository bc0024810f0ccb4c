"""
API request and response models for HubAuth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (fullName, accessToken, ...). _CamelModel generates
the aliases; populate_by_name lets Python code construct models with
snake_case field names. FastAPI serializes response_model output by alias.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Session, TotpSetup, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

_PASSWORD_MIN = 8
_PASSWORD_MAX = 128
# bcrypt only reads the first 72 bytes and bcrypt>=5 refuses longer input.
PASSWORD_MAX_BYTES = 72


def _fits_bcrypt(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded")
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(_CamelModel):
    """Request body for POST /api/v1/auth/signup."""

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    full_name: str = Field(min_length=1, max_length=255)
    department: Optional[str] = Field(default=None, max_length=255)

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: str) -> str:
        return _fits_bcrypt(value)


class LoginRequest(_CamelModel):
    """Request body for POST /api/v1/auth/login.

    No pattern on email: a malformed address must fail like any unknown one
    (401), not with a validation error that reveals input handling.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: str) -> str:
        return _fits_bcrypt(value)


class EmailRequest(_CamelModel):
    """Body for resend-verification and forgot-password."""

    email: str = Field(min_length=1, max_length=255)


class TokenRequest(_CamelModel):
    """Body for POST /api/v1/auth/verify-email."""

    token: str = Field(min_length=1, max_length=256)


class ResetPasswordRequest(_CamelModel):
    token: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)

    @field_validator("new_password")
    @classmethod
    def check_password_bytes(cls, value: str) -> str:
        return _fits_bcrypt(value)


class RefreshRequest(_CamelModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class CodeRequest(_CamelModel):
    """Body for 2fa/enable and 2fa/disable. Format is checked by the TOTP verifier."""

    code: str = Field(min_length=1, max_length=10)


class TotpVerifyRequest(_CamelModel):
    """Body for POST /api/v1/auth/2fa/verify -- code plus userId or tempToken."""

    code: str = Field(min_length=1, max_length=10)
    user_id: Optional[int] = None
    temp_token: Optional[str] = Field(default=None, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    """Public view of an account. Never includes hashes, secrets or counters."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    full_name: Optional[str]
    department: Optional[str]
    role: str
    email_verified: bool
    totp_enabled: bool
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Factory Method -- the domain-to-wire mapping lives beside the wire model."""
        return cls(
            id=user.id,
            email=user.email,
            full_name=user.full_name,
            department=user.department,
            role=user.role,
            email_verified=user.email_verified,
            totp_enabled=user.totp_enabled,
            created_at=user.created_at,
        )


class AuthResponse(_CamelModel):
    """Final-token response for signup, login and 2fa/verify.

    session_id / session_token are present only when session tracking is on
    and the flow completed a login (signup does not open a session).
    """

    message: str
    user: UserResponse
    access_token: str
    refresh_token: str
    session_id: Optional[int] = None
    session_token: Optional[str] = None


class TwoFactorChallenge(_CamelModel):
    """Login response when the account has 2FA enabled. No final tokens."""

    require2fa: bool = Field(default=True, alias="require2fa")
    temp_token: str
    user_id: int


class MessageResponse(_CamelModel):
    message: str


class MeResponse(_CamelModel):
    user: UserResponse


class RefreshResponse(_CamelModel):
    message: str = "Token refreshed successfully"
    access_token: str


class TotpSetupResponse(_CamelModel):
    message: str = "Scan the QR code with your authenticator app, then confirm with a code."
    secret: str
    otpauth_url: str
    qr_code: str

    @classmethod
    def from_setup(cls, setup: TotpSetup) -> "TotpSetupResponse":
        return cls(secret=setup.secret, otpauth_url=setup.otpauth_url, qr_code=setup.qr_code)


class SessionRow(_CamelModel):
    """One entry of GET /auth/sessions. The token hash is never exposed."""

    model_config = ConfigDict(frozen=True)

    id: int
    device_info: Optional[str]
    ip_address: Optional[str]
    created_at: str
    last_active: str
    expires_at: str
    current: bool = False

    @classmethod
    def from_session(cls, session: Session, current_id: Optional[int] = None) -> "SessionRow":
        return cls(
            id=session.id,
            device_info=session.device_info,
            ip_address=session.ip_address,
            created_at=session.created_at,
            last_active=session.last_active,
            expires_at=session.expires_at,
            current=current_id is not None and session.id == current_id,
        )


class SessionListResponse(_CamelModel):
    sessions: list[SessionRow]


class RevokeAllResponse(_CamelModel):
    message: str
    count: int


class CsrfTokenResponse(_CamelModel):
    csrf_token: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    meta: Optional[dict] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
