"""
auth/totp.py -- TOTP second-factor primitives (RFC 6238 via pyotp).

Per-account states, derived from the two stored columns:

  Disabled       totp_secret NULL,     totp_enabled 0
  PendingEnable  totp_secret present,  totp_enabled 0   (setup done, not confirmed)
  Enabled        totp_secret present,  totp_enabled 1

Codes are 6 digits on a 30 s step. verify_code() accepts one step either side
(valid_window=1) to absorb clock skew. Replay inside that window is not
tracked; see DESIGN.md.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import re
from io import BytesIO

import pyotp
import qrcode

from auth.models import User

_CODE_RE = re.compile(r"^\d{6}$")

DISABLED = "disabled"
PENDING = "pending"
ENABLED = "enabled"


def state_of(user: User) -> str:
    if user.totp_enabled and user.totp_secret:
        return ENABLED
    if user.totp_secret:
        return PENDING
    return DISABLED


def generate_secret() -> str:
    return pyotp.random_base32()


def provisioning_uri(secret: str, email: str, issuer: str) -> str:
    """otpauth:// URI that authenticator apps import (directly or via QR)."""
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=issuer)


def qr_data_url(uri: str) -> str:
    """Render the provisioning URI as a base64 PNG data: URL for the setup screen."""
    img = qrcode.make(uri)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def verify_code(secret: str | None, code: str | None) -> bool:
    """Return True only for a well-formed 6-digit code valid for secret right now.

    Malformed input (wrong length, non-digits, None) is just another False so
    callers can keep every failure undifferentiated.
    """
    if not secret or not code:
        return False
    code = code.strip()
    if not _CODE_RE.match(code):
        return False
    return bool(pyotp.TOTP(secret).verify(code, valid_window=1))
