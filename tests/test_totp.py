"""
tests/test_totp.py -- TOTP primitives: state derivation, code checks, provisioning.
"""

from __future__ import annotations

import time

import pyotp

from auth import totp
from auth.models import User


class TestState:
    def test_disabled(self) -> None:
        assert totp.state_of(User(email="a@b.co")) == totp.DISABLED

    def test_pending(self) -> None:
        assert totp.state_of(User(email="a@b.co", totp_secret=pyotp.random_base32())) == totp.PENDING

    def test_enabled(self) -> None:
        user = User(email="a@b.co", totp_secret=pyotp.random_base32(), totp_enabled=True)
        assert totp.state_of(user) == totp.ENABLED


class TestVerifyCode:
    def test_current_code(self) -> None:
        secret = totp.generate_secret()
        assert totp.verify_code(secret, pyotp.TOTP(secret).now())

    def test_previous_step_is_tolerated(self) -> None:
        secret = totp.generate_secret()
        previous = pyotp.TOTP(secret).at(time.time() - 30)
        assert totp.verify_code(secret, previous)

    def test_surrounding_whitespace_ignored(self) -> None:
        secret = totp.generate_secret()
        assert totp.verify_code(secret, f" {pyotp.TOTP(secret).now()} ")

    def test_malformed_codes(self) -> None:
        secret = totp.generate_secret()
        for bad in ("", "12345", "1234567", "abcdef", "12 456", None):
            assert totp.verify_code(secret, bad) is False

    def test_no_secret(self) -> None:
        assert totp.verify_code(None, "123456") is False


class TestProvisioning:
    def test_secret_is_base32(self) -> None:
        secret = totp.generate_secret()
        assert len(secret) >= 16
        assert set(secret) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZ234567")

    def test_uri_names_issuer_and_account(self) -> None:
        uri = totp.provisioning_uri("JBSWY3DPEHPK3PXP", "member@example.org", "SwahiliPot Hub")
        assert uri.startswith("otpauth://totp/")
        assert "secret=JBSWY3DPEHPK3PXP" in uri
        assert "issuer=SwahiliPot%20Hub" in uri
        assert "member" in uri

    def test_qr_is_png_data_url(self) -> None:
        url = totp.qr_data_url("otpauth://totp/x?secret=JBSWY3DPEHPK3PXP")
        assert url.startswith("data:image/png;base64,")
        assert len(url) > 100
