"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the auth
service do the work; these only own the domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A registered account.

    email is stored normalized (stripped, lower-cased) so uniqueness and
    lookups are case-insensitive.

    Opaque single-use tokens (email verification, password reset) are never
    stored raw: *_token_hash holds HMAC-SHA256(SECRET_KEY, token). A DB leak
    therefore does not hand out working verification or reset links.

    totp_secret set + totp_enabled False is the pending-enable state: setup
    has generated a secret but the user has not confirmed a code yet.
    """

    email: str
    role: str = "user"  # "user", "admin"
    id: int | None = None
    hashed_password: str | None = None
    full_name: str | None = None
    department: str | None = None
    email_verified: bool = False
    totp_secret: str | None = None
    totp_enabled: bool = False
    failed_login_attempts: int = 0
    locked_until: datetime | None = None
    verification_token_hash: str | None = None
    verification_expires: str | None = None
    reset_token_hash: str | None = None
    reset_expires: str | None = None
    password_changed_at: str | None = None
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class Session:
    """A per-device login session.

    The raw session token is returned to the client once at creation; only
    its HMAC hash is persisted (same approach as verification/reset tokens).
    revoked is one-way: nothing flips it back to False.
    """

    user_id: int
    token_hash: str
    expires_at: str
    id: int | None = None
    device_info: str | None = None
    ip_address: str | None = None
    created_at: str | None = None
    last_active: str | None = None
    revoked: bool = False


@dataclass
class FailedLogin:
    """Outcome of one atomic failed-login update.

    attempts is the counter value written by the statement, locked_until the
    lock deadline it wrote (None while the account stays Active).
    """

    attempts: int
    locked_until: datetime | None = None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class LoginResult:
    """What a completed password or second-factor step hands back to the route.

    Exactly one shape is populated: either final tokens (tokens set, with an
    optional tracked session), or a second-factor challenge (temp_token set).
    """

    user: User
    tokens: TokenPair | None = None
    session_id: int | None = None
    session_token: str | None = None
    temp_token: str | None = None

    @property
    def require_2fa(self) -> bool:
        return self.temp_token is not None


@dataclass
class TotpSetup:
    secret: str
    otpauth_url: str
    qr_code: str  # data: URL of a PNG QR code
