"""
api/csrf.py -- Double-submit CSRF middleware and cookie helper.

Runs on EVERY request, before routing and before authentication:
  1. If the csrf_token cookie is missing, mint one. It is set on this
     response and used as this request's token (request.state.csrf_token),
     so GET /api/v1/csrf-token can hand it to the client straight away.
  2. For state-changing methods (anything but GET/HEAD/OPTIONS), the
     X-CSRF-Token header must equal the cookie (auth.csrf.validate_csrf).
     A request that arrived without the cookie can never pass, because the
     freshly minted value was never seen by the client.

Rejections are rendered here as the standard error envelope (403) because
exceptions raised inside http middleware bypass the app's exception handlers.

Login and signup are NOT exempt: the guard is orthogonal to auth state.
"""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from auth.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME, generate_csrf_token, requires_check, validate_csrf
from auth.errors import CsrfError
from core.config import get_settings

logger = logging.getLogger("hubauth.api")


def set_csrf_cookie(response, token: str) -> None:
    """Write the CSRF token cookie.

    httponly=False: the frontend JS must read it to echo it in the header.
    samesite="strict": never attached to cross-site requests at all.
    secure: only over HTTPS when SECURE_COOKIES=true (production).
    """
    settings = get_settings()
    response.set_cookie(
        CSRF_COOKIE_NAME,
        value=token,
        httponly=False,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.csrf_cookie_max_age,
    )


async def csrf_protect(request: Request, call_next):
    cookie_token = request.cookies.get(CSRF_COOKIE_NAME)
    minted = None if cookie_token else generate_csrf_token()
    request.state.csrf_token = cookie_token or minted

    if requires_check(request.method):
        try:
            validate_csrf(cookie_token, request.headers.get(CSRF_HEADER_NAME))
        except CsrfError as exc:
            logger.warning(
                "CSRF rejection %s on %s %s from %s",
                exc.code,
                request.method,
                request.url.path,
                request.client.host if request.client else "unknown",
            )
            response = JSONResponse(
                status_code=exc.status_code,
                content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(exclude_none=True),
            )
            if minted:
                set_csrf_cookie(response, minted)
            return response

    response = await call_next(request)
    if minted:
        set_csrf_cookie(response, minted)
    return response
