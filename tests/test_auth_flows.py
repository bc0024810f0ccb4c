"""
tests/test_auth_flows.py -- End-to-end account flows over HTTP.

These tests exercise the full stack: CSRF middleware -> FastAPI routing ->
AuthService -> UserStore/SessionRegistry -> error envelope. Every POST
carries the CSRF header set up by the api_client fixture.

Coverage:
  - signup: 201 with tokens, duplicate 409, reserved admin email 403, 400 on bad input
  - login: tokens + session, 401 invalid_credentials, lockout 423 after 5 failures
  - verify-email / resend-verification: single-use token, already_verified
  - forgot-password / reset-password: generic answer, single-use token, lock cleared
  - refresh-token: new access token, distinct expired vs invalid codes
  - me / logout
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import jwt

from core.clock import from_iso
from core.config import get_settings

from conftest import PASSWORD, unique_email


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _login(client, email: str, password: str = PASSWORD):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


class TestSignup:
    def test_signup_issues_tokens_and_sends_verification(self, api_client, signup) -> None:
        client, _, mailer = api_client
        account = signup(full_name="Amina Otieno")
        assert account["accessToken"]
        assert account["refreshToken"]
        assert account["user"]["email"] == account["email"]
        assert account["user"]["fullName"] == "Amina Otieno"
        assert account["user"]["emailVerified"] is False
        assert account["user"]["role"] == "user"
        assert "hashedPassword" not in account["user"]
        assert any("Verify" in m.subject for m in mailer.to(account["email"]))

        me = client.get("/api/v1/auth/me", headers=bearer(account["accessToken"]))
        assert me.status_code == 200
        assert me.json()["user"]["id"] == account["user"]["id"]

    def test_signup_response_is_not_cached(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"email": unique_email(), "password": PASSWORD, "fullName": "No Cache"},
        )
        assert resp.status_code == 201
        assert resp.headers["Cache-Control"] == "no-store"

    def test_duplicate_email_conflicts_case_insensitively(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        resp = client.post(
            "/api/v1/auth/signup",
            json={"email": account["email"].upper(), "password": PASSWORD, "fullName": "Dup"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_reserved_admin_email_forbidden(self, api_client) -> None:
        client, _, mailer = api_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"email": "Admin@SwahiliPotHub.co.ke", "password": PASSWORD, "fullName": "Mallory"},
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "reserved_email"
        assert mailer.to("admin@swahilipothub.co.ke") == []

    def test_short_password_is_a_validation_error(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"email": unique_email(), "password": "shrt1", "fullName": "Short"},
        )
        assert resp.status_code == 400
        body = resp.json()["error"]
        assert body["code"] == "validation_error"
        assert "password" in body["detail"]
        assert "shrt1" not in resp.text

    def test_password_over_bcrypt_limit_is_a_validation_error(self, api_client) -> None:
        client, _, _ = api_client
        for password in ("A" * 100, "ü" * 40):
            resp = client.post(
                "/api/v1/auth/signup",
                json={"email": unique_email(), "password": password, "fullName": "Long"},
            )
            assert resp.status_code == 400, resp.text
            body = resp.json()["error"]
            assert body["code"] == "validation_error"
            assert "72 bytes" in body["detail"]

    def test_password_at_bcrypt_limit_is_accepted(self, api_client) -> None:
        client, _, _ = api_client
        email = unique_email()
        password = "Aa9" * 24
        resp = client.post("/api/v1/auth/signup", json={"email": email, "password": password, "fullName": "Edge"})
        assert resp.status_code == 201, resp.text
        assert _login(client, email, password).status_code == 200

    def test_malformed_email_rejected(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"email": "not-an-email", "password": PASSWORD, "fullName": "Bad"},
        )
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Login and lockout
# ---------------------------------------------------------------------------


class TestLogin:
    def test_login_returns_tokens_and_session(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        resp = _login(client, account["email"])
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["accessToken"] and data["refreshToken"]
        assert isinstance(data["sessionId"], int)
        assert data["sessionToken"]
        assert "require2fa" not in data
        assert resp.headers["Cache-Control"] == "no-store"

    def test_login_email_is_case_insensitive(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        assert _login(client, f"  {account['email'].upper()} ").status_code == 200

    def test_unknown_email(self, api_client) -> None:
        client, _, _ = api_client
        resp = _login(client, unique_email("ghost"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credentials"

    def test_wrong_password_reports_attempts_remaining(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        resp = _login(client, account["email"], "WrongHorse9")
        assert resp.status_code == 401
        error = resp.json()["error"]
        assert error["code"] == "invalid_credentials"
        assert error["meta"]["attemptsRemaining"] == 4

    def test_overlong_password_does_not_count_toward_lockout(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        resp = _login(client, account["email"], "A" * 100)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

        resp = _login(client, account["email"], "WrongHorse9")
        assert resp.json()["error"]["meta"]["attemptsRemaining"] == 4

    def test_fifth_failure_locks_account_for_thirty_minutes(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        for remaining in (4, 3, 2, 1):
            resp = _login(client, account["email"], "WrongHorse9")
            assert resp.status_code == 401
            assert resp.json()["error"]["meta"]["attemptsRemaining"] == remaining

        resp = _login(client, account["email"], "WrongHorse9")
        assert resp.status_code == 423
        error = resp.json()["error"]
        assert error["code"] == "account_locked"
        assert "30 minutes" in error["message"]
        assert error["meta"]["minutesRemaining"] == 30
        assert error["meta"]["lockedUntil"]

        # The correct password does not get through while locked.
        resp = _login(client, account["email"])
        assert resp.status_code == 423
        assert "30 minute" in resp.json()["error"]["message"]

    def test_success_resets_the_counter(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        for _ in range(3):
            _login(client, account["email"], "WrongHorse9")
        assert _login(client, account["email"]).status_code == 200
        resp = _login(client, account["email"], "WrongHorse9")
        assert resp.json()["error"]["meta"]["attemptsRemaining"] == 4


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


class TestVerification:
    def test_verify_email_once(self, api_client, signup, mailed_token) -> None:
        client, _, _ = api_client
        account = signup()
        token = mailed_token(account["email"], "Verify")

        resp = client.post("/api/v1/auth/verify-email", json={"token": token})
        assert resp.status_code == 200
        me = client.get("/api/v1/auth/me", headers=bearer(account["accessToken"]))
        assert me.json()["user"]["emailVerified"] is True

        again = client.post("/api/v1/auth/verify-email", json={"token": token})
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "invalid_token"

    def test_unknown_token(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/verify-email", json={"token": "deadbeef" * 8})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_resend_replaces_the_token(self, api_client, signup, mailed_token) -> None:
        client, _, _ = api_client
        account = signup()
        first = mailed_token(account["email"], "Verify")
        resp = client.post("/api/v1/auth/resend-verification", json={"email": account["email"]})
        assert resp.status_code == 200
        second = mailed_token(account["email"], "Verify")
        assert second != first
        assert client.post("/api/v1/auth/verify-email", json={"token": first}).status_code == 400
        assert client.post("/api/v1/auth/verify-email", json={"token": second}).status_code == 200

    def test_resend_for_unknown_email_is_generic(self, api_client) -> None:
        client, _, mailer = api_client
        ghost = unique_email("ghost")
        resp = client.post("/api/v1/auth/resend-verification", json={"email": ghost})
        assert resp.status_code == 200
        assert "verification link" in resp.json()["message"]
        assert mailer.to(ghost) == []

    def test_resend_for_verified_account(self, api_client, signup, mailed_token) -> None:
        client, _, _ = api_client
        account = signup()
        client.post("/api/v1/auth/verify-email", json={"token": mailed_token(account["email"], "Verify")})
        resp = client.post("/api/v1/auth/resend-verification", json={"email": account["email"]})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "already_verified"


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class TestPasswordReset:
    def test_forgot_password_answer_does_not_reveal_registration(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        known = client.post("/api/v1/auth/forgot-password", json={"email": account["email"]})
        unknown = client.post("/api/v1/auth/forgot-password", json={"email": unique_email("ghost")})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_reset_password_once(self, api_client, signup, mailed_token) -> None:
        client, _, mailer = api_client
        account = signup()
        client.post("/api/v1/auth/forgot-password", json={"email": account["email"]})
        token = mailed_token(account["email"], "Password Reset")

        resp = client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "BrandNew99"})
        assert resp.status_code == 200
        assert any("Password Changed" in m.subject for m in mailer.to(account["email"]))

        assert _login(client, account["email"]).status_code == 401
        assert _login(client, account["email"], "BrandNew99").status_code == 200

        again = client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "Another99"})
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "invalid_token"

    def test_reset_rejects_password_over_bcrypt_limit(self, api_client, signup, mailed_token) -> None:
        client, _, _ = api_client
        account = signup()
        client.post("/api/v1/auth/forgot-password", json={"email": account["email"]})
        token = mailed_token(account["email"], "Password Reset")

        resp = client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "B" * 100})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

        # The token was not consumed by the rejected request.
        resp = client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "BrandNew99"})
        assert resp.status_code == 200

    def test_reset_clears_lockout(self, api_client, signup, mailed_token) -> None:
        client, _, _ = api_client
        account = signup()
        for _ in range(5):
            _login(client, account["email"], "WrongHorse9")
        assert _login(client, account["email"]).status_code == 423

        client.post("/api/v1/auth/forgot-password", json={"email": account["email"]})
        token = mailed_token(account["email"], "Password Reset")
        client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "BrandNew99"})
        assert _login(client, account["email"], "BrandNew99").status_code == 200

    def test_reset_revokes_sessions(self, api_client, signup, mailed_token) -> None:
        client, _, _ = api_client
        account = signup()
        login = _login(client, account["email"]).json()
        client.post("/api/v1/auth/forgot-password", json={"email": account["email"]})
        token = mailed_token(account["email"], "Password Reset")
        client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "BrandNew99"})

        resp = client.get(
            "/api/v1/auth/me",
            headers={**bearer(login["accessToken"]), "X-Session-Token": login["sessionToken"]},
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "session_revoked"

    def test_reset_invalidates_older_refresh_tokens(self, api_client, signup, mailed_token) -> None:
        client, _, _ = api_client
        account = signup()
        now = datetime.now(timezone.utc)
        issued_earlier = jwt.encode(
            {
                "sub": account["email"],
                "user_id": account["user"]["id"],
                "typ": "refresh",
                "iat": now - timedelta(minutes=5),
                "exp": now + timedelta(days=1),
            },
            get_settings().refresh_signing_key,
            algorithm="HS256",
        )
        assert client.post("/api/v1/auth/refresh-token", json={"refreshToken": issued_earlier}).status_code == 200

        client.post("/api/v1/auth/forgot-password", json={"email": account["email"]})
        token = mailed_token(account["email"], "Password Reset")
        client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "BrandNew99"})

        resp = client.post("/api/v1/auth/refresh-token", json={"refreshToken": issued_earlier})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_refresh_token"

    def test_reset_invalidates_refresh_tokens_from_the_same_second(self, api_client, signup, mailed_token) -> None:
        client, service, _ = api_client
        account = signup()
        client.post("/api/v1/auth/forgot-password", json={"email": account["email"]})
        token = mailed_token(account["email"], "Password Reset")
        client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "BrandNew99"})
        changed = from_iso(service.users.get_by_id(account["user"]["id"]).password_changed_at)

        def minted_at(moment: datetime) -> str:
            return jwt.encode(
                {
                    "sub": account["email"],
                    "user_id": account["user"]["id"],
                    "typ": "refresh",
                    "iat": moment,
                    "exp": moment + timedelta(days=1),
                },
                get_settings().refresh_signing_key,
                algorithm="HS256",
            )

        same_second = minted_at(changed.replace(microsecond=0))
        resp = client.post("/api/v1/auth/refresh-token", json={"refreshToken": same_second})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_refresh_token"

        next_second = minted_at(changed.replace(microsecond=0) + timedelta(seconds=1))
        assert client.post("/api/v1/auth/refresh-token", json={"refreshToken": next_second}).status_code == 200


# ---------------------------------------------------------------------------
# Refresh, me, logout
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_refresh_returns_usable_access_token(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        resp = client.post("/api/v1/auth/refresh-token", json={"refreshToken": account["refreshToken"]})
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        access = resp.json()["accessToken"]
        assert client.get("/api/v1/auth/me", headers=bearer(access)).status_code == 200

    def test_garbage_refresh_token(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/refresh-token", json={"refreshToken": "not.a.token"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_refresh_token"

    def test_access_token_is_not_a_refresh_token(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        resp = client.post("/api/v1/auth/refresh-token", json={"refreshToken": account["accessToken"]})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_refresh_token"

    def test_expired_refresh_token(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        past = datetime.now(timezone.utc) - timedelta(days=8)
        expired = jwt.encode(
            {"sub": account["email"], "user_id": account["user"]["id"], "typ": "refresh", "iat": past, "exp": past + timedelta(days=7)},
            get_settings().refresh_signing_key,
            algorithm="HS256",
        )
        resp = client.post("/api/v1/auth/refresh-token", json={"refreshToken": expired})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "refresh_token_expired"


class TestMeAndLogout:
    def test_me_requires_auth(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_refresh_token_is_not_a_bearer_token(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        assert client.get("/api/v1/auth/me", headers=bearer(account["refreshToken"])).status_code == 401

    def test_logout_revokes_presented_session(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        login = _login(client, account["email"]).json()
        headers = {**bearer(login["accessToken"]), "X-Session-Token": login["sessionToken"]}

        assert client.get("/api/v1/auth/me", headers=headers).status_code == 200
        assert client.post("/api/v1/auth/logout", headers=headers).status_code == 200
        resp = client.get("/api/v1/auth/me", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "session_revoked"

    def test_stateless_logout(self, api_client, signup) -> None:
        client, _, _ = api_client
        account = signup()
        assert client.post("/api/v1/auth/logout", headers=bearer(account["accessToken"])).status_code == 200
