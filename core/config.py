"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for HubAuth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a signing key with a
      warning; production mode refuses to start without one.

Security notes:
  [M6] SECRET_KEY (and REFRESH_SECRET_KEY when set) shorter than 32 chars is
       rejected outright. JWT signing and the HMAC hashes of opaque tokens both
       rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("hubauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'hubauth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    # Refresh tokens are signed with their own key when one is configured,
    # so a leaked access-signing key cannot mint long-lived credentials.
    refresh_secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    frontend_url: str = "http://localhost:5173"
    # Reserved administrative address. Self-service signup may never claim it.
    admin_email: str = ""
    allowed_hosts: list[str] = ["*"]
    allowed_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    temp_token_expire_seconds: int = 5 * 60
    verification_token_hours: int = 24
    reset_token_minutes: int = 60

    # ------------------------------------------------------------------
    # Passwords and lockout
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    max_failed_attempts: int = 5
    lockout_minutes: int = 30

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    # False = stateless-only deployment: logins issue JWTs without a session row.
    session_tracking: bool = True
    session_expire_seconds: int = 7 * 24 * 3600
    session_touch_interval_seconds: int = 300
    session_purge_interval_seconds: int = 6 * 3600
    revoke_sessions_on_password_reset: bool = True

    # ------------------------------------------------------------------
    # Enumeration policy
    # ------------------------------------------------------------------

    # False keeps resend-verification's distinct "already verified" answer.
    # True makes it as generic as forgot-password.
    uniform_enumeration_responses: bool = False

    # ------------------------------------------------------------------
    # Cookies / CSRF
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    csrf_cookie_max_age: int = 24 * 3600

    # ------------------------------------------------------------------
    # Second factor
    # ------------------------------------------------------------------

    totp_issuer: str = "SwahiliPot Hub"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    signup_rate_limit: str = "5/minute"
    sensitive_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Mail (empty smtp_host = dev mode, messages are logged instead of sent)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = ""
    mail_from_name: str = "SwahiliPot Hub"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the signing-key policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.refresh_secret_key and len(self.refresh_secret_key) < 32:
            raise ValueError("REFRESH_SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def refresh_signing_key(self) -> str:
        return self.refresh_secret_key or self.secret_key


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
