"""
auth/emails.py -- Message bodies for the account emails.

Each builder returns (subject, text, html) ready for Mailer.dispatch().
Names come from user input, so every interpolated value is HTML-escaped.
"""

from __future__ import annotations

import html
from urllib.parse import urlencode

_BRAND = "SwahiliPot Hub"

_WRAPPER = '<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;padding:20px;">{body}</div>'
_BUTTON = (
    '<a href="{url}" style="display:inline-block;padding:12px 24px;background:{color};'
    'color:white;text-decoration:none;border-radius:6px;margin:16px 0;">{label}</a>'
)


def _link(frontend_url: str, path: str, token: str) -> str:
    return f"{frontend_url.rstrip('/')}/{path}?{urlencode({'token': token})}"


def verification_email(frontend_url: str, token: str, full_name: str | None, hours: int) -> tuple[str, str, str]:
    url = _link(frontend_url, "verify-email", token)
    name = full_name or "there"
    subject = f"Verify Your Email - {_BRAND}"
    text = (
        f"Hello {name},\n\nPlease verify your email by opening: {url}\n\n"
        f"This link expires in {hours} hours.\n\n{_BRAND} Team"
    )
    body = (
        f'<h2 style="color:#0B4F6C;">Welcome to {_BRAND}!</h2>'
        f"<p>Hello <strong>{html.escape(name)}</strong>,</p>"
        "<p>Please verify your email address to activate your account.</p>"
        + _BUTTON.format(url=html.escape(url), color="#0B4F6C", label="Verify Email")
        + f'<p style="color:#666;font-size:12px;">This link expires in {hours} hours. '
        "If you didn't create an account, ignore this email.</p>"
    )
    return subject, text, _WRAPPER.format(body=body)


def password_reset_email(frontend_url: str, token: str, full_name: str | None, minutes: int) -> tuple[str, str, str]:
    url = _link(frontend_url, "reset-password", token)
    name = full_name or "there"
    subject = f"Password Reset - {_BRAND}"
    text = f"Reset your password: {url}\n\nThis link expires in {minutes} minutes."
    body = (
        '<h2 style="color:#0B4F6C;">Password Reset Request</h2>'
        f"<p>Hello <strong>{html.escape(name)}</strong>,</p>"
        "<p>We received a request to reset your password. Click below to proceed:</p>"
        + _BUTTON.format(url=html.escape(url), color="#dc2626", label="Reset Password")
        + f'<p style="color:#666;font-size:12px;">This link expires in {minutes} minutes. '
        "If you didn't request this, ignore this email.</p>"
    )
    return subject, text, _WRAPPER.format(body=body)


def password_changed_email() -> tuple[str, str, str]:
    subject = f"Password Changed - {_BRAND}"
    text = (
        "Your password has been changed successfully.\n\n"
        "If you did not make this change, please contact support immediately."
    )
    body = (
        '<h2 style="color:#0B4F6C;">Password Changed</h2>'
        "<p>Your password has been changed successfully.</p>"
        "<p>If you did not make this change, please contact support immediately.</p>"
    )
    return subject, text, _WRAPPER.format(body=body)
