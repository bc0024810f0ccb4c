"""
auth/service.py -- Auth orchestrator: signup, login, verification, reset, refresh, 2FA.

Pattern: Service layer. AuthService composes the credential store, lockout
policy, token issuer, TOTP verifier and session registry into the account
flows. Routes stay thin: they parse the request, call one method, and shape
the response. Expected failures leave this module as AuthError subclasses
(auth/errors.py) which api/main.py renders; nothing here imports FastAPI.

Enumeration policy:
  login            unknown email and wrong password share status 401 and code
                   invalid_credentials; bcrypt runs in both cases [C1]. A wrong
                   password additionally reports attempts remaining (policy).
  forgot-password  always the same generic 200.
  resend-verify    generic for unknown emails, but a distinct 400 for an
                   already-verified account unless
                   UNIFORM_ENUMERATION_RESPONSES is set.
  2fa/verify       every failure is the same 401 "Invalid code".

Token issuance (issue_tokens) and session recording (start_session) are two
separate steps; complete_login() composes them according to SESSION_TRACKING.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from auth import emails, totp
from auth.errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    LockedError,
    TokenExpiredError,
    TokenInvalidError,
    ValidationError,
)
from auth.lockout import LockoutPolicy
from auth.models import LoginResult, Session, TokenPair, TotpSetup, User
from auth.sessions import SessionRegistry
from auth.store import UserStore, normalize_email
from auth.tokens import (
    create_access_token,
    create_refresh_token,
    create_temp_token,
    equalize_timing,
    generate_secure_token,
    hash_password,
    hash_token,
    verify_password,
    verify_refresh_token,
    verify_temp_token,
)
from core.clock import from_iso, to_iso, utcnow
from core.config import Settings, get_settings
from core.mailer import Mailer

logger = logging.getLogger("hubauth.auth")

VERIFICATION_SENT = "If that email exists, a verification link has been sent."
RESET_SENT = "If that email is registered, a password reset link has been sent."


def _invalid_code() -> AuthenticationError:
    return AuthenticationError("Invalid code.", code="invalid_code")


class AuthService:
    def __init__(
        self,
        users: UserStore,
        sessions: SessionRegistry,
        mailer: Mailer,
        settings: Settings | None = None,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.mailer = mailer
        self.settings = settings or get_settings()
        self.policy = LockoutPolicy.from_settings(self.settings)

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    def signup(self, email: str, password: str, full_name: str | None = None, department: str | None = None) -> LoginResult:
        """Create an account and hand back tokens straight away.

        The account can use the API before its email is verified; which
        capabilities require verification is up to the integrating system.
        """
        normalized = normalize_email(email)
        reserved = self.settings.admin_email
        if reserved and normalized == normalize_email(reserved):
            raise ForbiddenError("Cannot use admin email for signup.", code="reserved_email")
        if self.users.get_by_email(normalized) is not None:
            raise ConflictError("Email already registered.")

        new_user = User(
            email=normalized,
            hashed_password=hash_password(password),
            full_name=full_name,
            department=department,
        )
        try:
            user_id = self.users.create_user(new_user)
        except IntegrityError as exc:
            # A concurrent signup won the UNIQUE(email) race.
            raise ConflictError("Email already registered.") from exc

        user = self.users.get_by_id(user_id)
        self._send_verification(user)
        logger.info("New user registered: id=%s", user.id)
        return LoginResult(user=user, tokens=self.issue_tokens(user))

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, device_info: str | None = None, ip_address: str | None = None) -> LoginResult:
        """Password step of login.

        Returns final tokens, or a temp-token challenge when 2FA is enabled.
        Raises AuthenticationError (401) or LockedError (423).
        """
        now = utcnow()
        user = self.users.get_by_email(email)
        if user is None:
            equalize_timing(password)  # [C1]
            raise AuthenticationError("Invalid email or password.", code="invalid_credentials")

        if self.policy.is_locked(user, now):
            raise self._locked(user.locked_until, now)

        if not verify_password(password, user.hashed_password):
            raise self._failed_password(user, now)

        if not self.users.record_successful_login(user.id, now):
            # Locked by a concurrent request between our read and this write.
            raise self._locked(self._current_lock(user.id, now), now)

        if user.totp_enabled:
            logger.info("2FA required for user %s", user.id)
            return LoginResult(user=user, temp_token=create_temp_token(user.id))

        logger.info("User %s logged in", user.id)
        return self.complete_login(user, device_info, ip_address)

    def _failed_password(self, user: User, now: datetime) -> LockedError | AuthenticationError:
        outcome = self.users.register_failed_login(user.id, self.policy, now)
        if outcome is None:
            return self._locked(self._current_lock(user.id, now), now)
        if outcome.locked_until is not None:
            logger.warning("Account %s locked after %d failed attempts", user.id, outcome.attempts)
            return LockedError(
                f"Too many failed attempts. Account locked for {self.policy.lockout_minutes} minutes.",
                meta={
                    "minutesRemaining": self.policy.minutes_remaining(outcome.locked_until, now),
                    "lockedUntil": to_iso(outcome.locked_until),
                },
            )
        remaining = self.policy.attempts_remaining(outcome.attempts)
        return AuthenticationError(
            f"Invalid email or password. {remaining} attempt(s) remaining before lockout.",
            code="invalid_credentials",
            meta={"attemptsRemaining": remaining},
        )

    def _current_lock(self, user_id: int, now: datetime) -> datetime:
        fresh = self.users.get_by_id(user_id)
        if fresh is not None and fresh.locked_until is not None:
            return fresh.locked_until
        return self.policy.deadline(now)

    def _locked(self, locked_until: datetime, now: datetime) -> LockedError:
        minutes = self.policy.minutes_remaining(locked_until, now)
        return LockedError(
            "Account temporarily locked due to too many failed attempts. " f"Try again in {minutes} minute(s).",
            meta={"minutesRemaining": minutes, "lockedUntil": to_iso(locked_until)},
        )

    # ------------------------------------------------------------------
    # Token issuance and session recording (separately callable)
    # ------------------------------------------------------------------

    def issue_tokens(self, user: User) -> TokenPair:
        return TokenPair(
            access_token=create_access_token(user.id, user.email, user.role),
            refresh_token=create_refresh_token(user.id, user.email),
        )

    def start_session(self, user: User, device_info: str | None, ip_address: str | None) -> tuple[Session, str]:
        return self.sessions.create(user.id, device_info, ip_address)

    def complete_login(self, user: User, device_info: str | None = None, ip_address: str | None = None) -> LoginResult:
        """Final step of every successful login: tokens, plus a session when tracking is on."""
        result = LoginResult(user=user, tokens=self.issue_tokens(user))
        if self.settings.session_tracking:
            session, raw_token = self.start_session(user, device_info, ip_address)
            result.session_id = session.id
            result.session_token = raw_token
        return result

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def _send_verification(self, user: User) -> None:
        raw_token = generate_secure_token()
        hours = self.settings.verification_token_hours
        self.users.set_verification_token(user.id, hash_token(raw_token), utcnow() + timedelta(hours=hours))
        subject, text, html = emails.verification_email(self.settings.frontend_url, raw_token, user.full_name, hours)
        self.mailer.dispatch(user.email, subject, text, html)

    def verify_email(self, token: str) -> User:
        """Consume a verification token. Unknown and expired tokens fail identically."""
        user = self.users.consume_verification_token(hash_token(token))
        if user is None:
            raise ValidationError("Invalid or expired verification token.", code="invalid_token")
        logger.info("Email verified for user %s", user.id)
        return user

    def resend_verification(self, email: str) -> str:
        user = self.users.get_by_email(email)
        if user is None:
            return VERIFICATION_SENT
        if user.email_verified:
            if self.settings.uniform_enumeration_responses:
                return VERIFICATION_SENT
            raise ValidationError("Email is already verified.", code="already_verified")
        self._send_verification(user)
        return VERIFICATION_SENT

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> str:
        """Issue a reset link if the account exists. The answer never says whether it does."""
        user = self.users.get_by_email(email)
        if user is not None:
            raw_token = generate_secure_token()
            minutes = self.settings.reset_token_minutes
            self.users.set_reset_token(user.id, hash_token(raw_token), utcnow() + timedelta(minutes=minutes))
            subject, text, html = emails.password_reset_email(
                self.settings.frontend_url, raw_token, user.full_name, minutes
            )
            self.mailer.dispatch(user.email, subject, text, html)
            logger.info("Password reset requested for user %s", user.id)
        return RESET_SENT

    def reset_password(self, token: str, new_password: str) -> User:
        """Consume a reset token exactly once and set the new password.

        Sends a security notice, and revokes every session of the account
        when REVOKE_SESSIONS_ON_PASSWORD_RESET is on.
        """
        user = self.users.consume_reset_token(hash_token(token), hash_password(new_password))
        if user is None:
            raise ValidationError("Invalid or expired password reset token.", code="invalid_token")
        subject, text, html = emails.password_changed_email()
        self.mailer.dispatch(user.email, subject, text, html)
        if self.settings.revoke_sessions_on_password_reset:
            self.sessions.revoke_all(user.id)
        logger.info("Password reset completed for user %s", user.id)
        return user

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> str:
        """Exchange a refresh token for a new access token (the refresh token is not rotated).

        Distinct codes let clients decide: refresh_token_expired -> re-login,
        invalid_refresh_token -> the token is garbage or forged.
        """
        try:
            payload = verify_refresh_token(refresh_token)
        except TokenExpiredError as exc:
            raise TokenExpiredError("Refresh token expired. Please login again.", code="refresh_token_expired") from exc
        except TokenInvalidError as exc:
            raise TokenInvalidError("Invalid refresh token.", code="invalid_refresh_token") from exc

        user = self.users.get_by_id(payload["user_id"])
        if user is None:
            raise TokenInvalidError("Invalid refresh token.", code="invalid_refresh_token")
        # Refresh tokens minted before a password reset die with the old password.
        # iat has whole-second resolution, so the reset second itself is refused.
        changed = from_iso(user.password_changed_at)
        if changed is not None and int(payload.get("iat", 0)) <= int(changed.timestamp()):
            raise TokenInvalidError("Invalid refresh token.", code="invalid_refresh_token")
        return create_access_token(user.id, user.email, user.role)

    # ------------------------------------------------------------------
    # Second factor
    # ------------------------------------------------------------------

    def setup_totp(self, user: User) -> TotpSetup:
        """Generate a pending secret. 2FA stays off until enable_totp() confirms a code."""
        if totp.state_of(user) == totp.ENABLED:
            raise ValidationError("Two-factor authentication is already enabled.", code="2fa_already_enabled")
        secret = totp.generate_secret()
        if not self.users.set_pending_totp_secret(user.id, secret):
            raise ValidationError("Two-factor authentication is already enabled.", code="2fa_already_enabled")
        uri = totp.provisioning_uri(secret, user.email, self.settings.totp_issuer)
        return TotpSetup(secret=secret, otpauth_url=uri, qr_code=totp.qr_data_url(uri))

    def enable_totp(self, user: User, code: str) -> None:
        if totp.state_of(user) != totp.PENDING or not totp.verify_code(user.totp_secret, code):
            raise ValidationError("Invalid code.", code="invalid_code")
        if not self.users.enable_totp(user.id, user.totp_secret):
            raise ValidationError("Invalid code.", code="invalid_code")
        logger.info("2FA enabled for user %s", user.id)

    def disable_totp(self, user: User, code: str) -> None:
        if totp.state_of(user) != totp.ENABLED or not totp.verify_code(user.totp_secret, code):
            raise ValidationError("Invalid code.", code="invalid_code")
        if not self.users.disable_totp(user.id):
            raise ValidationError("Invalid code.", code="invalid_code")
        logger.info("2FA disabled for user %s", user.id)

    def verify_totp_login(
        self,
        code: str,
        user_id: int | None = None,
        temp_token: str | None = None,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> LoginResult:
        """Second step of login. Every failure is the same 401 "Invalid code".

        The account comes from the temp token or from an explicit user_id; when
        both are sent they must agree. Wrong codes count toward the same
        lockout as wrong passwords.
        """
        target_id = user_id
        if temp_token:
            try:
                payload = verify_temp_token(temp_token)
            except (TokenExpiredError, TokenInvalidError) as exc:
                raise _invalid_code() from exc
            if user_id is not None and user_id != payload["user_id"]:
                raise _invalid_code()
            target_id = payload["user_id"]
        if target_id is None:
            raise _invalid_code()

        now = utcnow()
        user = self.users.get_by_id(target_id)
        if user is None or totp.state_of(user) != totp.ENABLED or self.policy.is_locked(user, now):
            raise _invalid_code()
        if not totp.verify_code(user.totp_secret, code):
            self.users.register_failed_login(user.id, self.policy, now)
            raise _invalid_code()
        if not self.users.record_successful_login(user.id, now):
            raise _invalid_code()

        logger.info("User %s completed 2FA login", user.id)
        return self.complete_login(user, device_info, ip_address)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def resolve_session(self, raw_token: str, user: User) -> Session:
        """Check a presented X-Session-Token belongs to user and is live; touch it."""
        session = self.sessions.get_active_by_token(raw_token)
        if session is None or session.user_id != user.id:
            raise AuthenticationError("Session has been revoked or expired.", code="session_revoked")
        self.sessions.touch(session.id)
        return session

    def list_sessions(self, user: User) -> list[Session]:
        return self.sessions.list_active(user.id)

    def revoke_session(self, user: User, session_id: int) -> None:
        self.sessions.revoke(session_id, user.id)

    def revoke_all_sessions(self, user: User) -> int:
        return self.sessions.revoke_all(user.id)
