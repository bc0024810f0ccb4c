"""
auth/tokens.py -- Token issuer: JWTs, opaque one-shot tokens, password hashing.

Security design decisions:
  JWT: python-jose with HS256. Three signed kinds share one encoder and are
       told apart by the "typ" claim:
         access  -- short TTL, carries user_id, email (sub), role.
         refresh -- longer TTL, signed with REFRESH_SECRET_KEY when configured,
                    exchanged only for a new access token (never rotated).
         temp    -- short TTL, carries user_id only; good for nothing except
                    completing second-factor verification.
       A token presented as the wrong kind is rejected as invalid, so a temp
       token can never authorize an API call.

       Strict verifiers raise TokenExpiredError for a correctly signed but
       expired token and TokenInvalidError for everything else (bad signature,
       garbage, wrong typ). python-jose checks the signature before claims, so
       "expired" always implies "well-formed and authentic". Callers can then
       choose between retry and forced re-login.

  Opaque tokens: verification, password-reset, and session tokens are
       secrets.token_hex() values with no structure. We store
       HMAC-SHA256(SECRET_KEY, raw) so lookup is O(1) and a DB dump cannot be
       replayed. Single-use is enforced by the store, not by signatures.

  Passwords: bcrypt directly (no passlib wrapper) with a fixed work factor.
       The _DUMMY_HASH constant enables timing equalization so response time
       does not reveal whether an email is registered [C1].

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import TokenExpiredError, TokenInvalidError
from core.config import get_settings


# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"
TEMP = "temp"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt>=5 raises ValueError for input over 72 bytes. The request models
    and the admin CLI reject such passwords before they get here.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("hubauth_timing_dummy")


def equalize_timing(plain: str) -> None:
    """Burn one bcrypt comparison for a login that has no real hash to check [C1]."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _encode(claims: dict, kind: str, key: str, duration: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {**claims, "typ": kind, "iat": now, "exp": now + timedelta(seconds=duration)}
    return jwt.encode(payload, key, algorithm=_ALGORITHM)


def _decode(token: str, kind: str, key: str) -> dict:
    try:
        payload = jwt.decode(token, key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpiredError("Token has expired.") from exc
    except JWTError as exc:
        raise TokenInvalidError("Token is invalid.") from exc
    if payload.get("typ") != kind or "user_id" not in payload:
        raise TokenInvalidError("Token is invalid.")
    return payload


def create_access_token(user_id: int, email: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed access JWT with user identity.

    Args:
        user_id:        Numeric user ID stored in the DB.
        email:          Stored as the JWT subject claim.
        role:           "user" or "admin".
        expire_seconds: Override for the TTL. 0 (default) uses
                        Settings.access_token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    claims = {"sub": email, "user_id": user_id, "role": role}
    return _encode(claims, ACCESS, _settings.secret_key, duration)


def create_refresh_token(user_id: int, email: str, expire_seconds: int = 0) -> str:
    duration = expire_seconds if expire_seconds > 0 else _settings.refresh_token_expire_seconds
    claims = {"sub": email, "user_id": user_id}
    return _encode(claims, REFRESH, _settings.refresh_signing_key, duration)


def create_temp_token(user_id: int, expire_seconds: int = 0) -> str:
    """Encode a short-lived token that only the 2FA verify step accepts."""
    duration = expire_seconds if expire_seconds > 0 else _settings.temp_token_expire_seconds
    return _encode({"user_id": user_id}, TEMP, _settings.secret_key, duration)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify an access JWT. Returns the payload dict or None on any failure.

    Returning None (rather than raising) keeps the auth dependency simple: any
    invalid token is treated as unauthenticated.
    """
    try:
        payload = _decode(token, ACCESS, _settings.secret_key)
    except (TokenExpiredError, TokenInvalidError):
        return None
    if "role" not in payload:
        return None
    return payload


def verify_refresh_token(token: str) -> dict:
    """Verify a refresh JWT. Raises TokenExpiredError or TokenInvalidError."""
    return _decode(token, REFRESH, _settings.refresh_signing_key)


def verify_temp_token(token: str) -> dict:
    """Verify a 2FA temp JWT. Raises TokenExpiredError or TokenInvalidError."""
    return _decode(token, TEMP, _settings.secret_key)


# ---------------------------------------------------------------------------
# Opaque tokens
# ---------------------------------------------------------------------------


def generate_secure_token(nbytes: int = 32) -> str:
    """Return nbytes of CSPRNG output as hex (32 bytes = 256 bits of entropy)."""
    return secrets.token_hex(nbytes)


def hash_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string.

    Deterministic so the store can look tokens up by hash through a UNIQUE
    index, keyed so a DB dump alone cannot be used to forge a lookup value.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()
