"""
auth/csrf.py -- Stateless double-submit CSRF validation.

The server keeps no CSRF state. A random token lives in a script-readable
cookie; the browser's own JS copies it into the X-CSRF-Token header on every
state-changing request. A cross-site attacker can make the browser SEND the
cookie but cannot READ it, so it cannot forge the matching header.

This module is pure (no FastAPI imports). api/csrf.py is the middleware that
applies it to every request, logged in or not.
"""

from __future__ import annotations

import hmac
import re
import secrets

from auth.errors import CsrfError

CSRF_COOKIE_NAME = "csrf_token"
CSRF_HEADER_NAME = "x-csrf-token"
TOKEN_BYTES = 32
TOKEN_LENGTH = TOKEN_BYTES * 2  # hex

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def generate_csrf_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def requires_check(method: str) -> bool:
    return method.upper() not in SAFE_METHODS


def validate_csrf(cookie_token: str | None, header_token: str | None) -> None:
    """Raise CsrfError unless header and cookie carry the same well-formed token.

    CSRF_TOKEN_MISSING  -- either side absent or empty.
    CSRF_TOKEN_INVALID  -- wrong length, not hex, or the values differ.

    Comparison uses hmac.compare_digest so the time taken does not depend on
    how many leading characters match.
    """
    if not cookie_token or not header_token:
        raise CsrfError(
            "CSRF token missing. Please include X-CSRF-Token header.",
            code="CSRF_TOKEN_MISSING",
        )
    for value in (cookie_token, header_token):
        if len(value) != TOKEN_LENGTH or not _HEX_RE.match(value):
            raise CsrfError("Invalid CSRF token format.", code="CSRF_TOKEN_INVALID")
    if not hmac.compare_digest(cookie_token.lower().encode(), header_token.lower().encode()):
        raise CsrfError("Invalid CSRF token.", code="CSRF_TOKEN_INVALID")
