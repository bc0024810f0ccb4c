"""
auth/store.py -- Credential store: SQLAlchemy Core persistence for accounts.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Route, service and
dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Shared per-account state (failed-login counter, lock deadline, single-use
  tokens) is only ever changed by ONE conditional UPDATE per operation. The
  condition lives in the WHERE clause and the new values are computed by the
  database from the row's current values, so two concurrent requests cannot
  both read "4 failures" and both write "5". UPDATE ... RETURNING hands back
  exactly what this statement wrote. Python-side read-modify-write of these
  columns is not allowed anywhere in the codebase.

  Emails are normalized (strip + lower) on every write and lookup; the UNIQUE
  constraint on the normalized value gives case-insensitive uniqueness.

Timestamps are fixed-width ISO strings from core.clock, so string comparison
in SQL is chronological comparison.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, case, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.lockout import LockoutPolicy
from auth.models import FailedLogin, User
from core.clock import from_iso, to_iso, utcnow

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # normalized
    Column("hashed_password", Text, nullable=False),
    Column("full_name", String(255)),
    Column("department", String(255)),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("totp_secret", String(64)),  # set + totp_enabled=0 -> pending enable
    Column("totp_enabled", Integer, nullable=False, server_default="0"),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("verification_token_hash", String(64), unique=True),  # HMAC-SHA256 hex
    Column("verification_expires", String(32)),
    Column("reset_token_hash", String(64), unique=True),  # HMAC-SHA256 hex
    Column("reset_expires", String(32)),
    Column("password_changed_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL lets readers proceed while a writer holds the lock. Set per-connection
    because SQLite PRAGMAs are not inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an Engine for the auth DB and ensure the schema exists.

    UserStore and SessionRegistry share one Engine (one connection pool) in
    the running app; tests build one per isolated in-memory database.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User accounts.

    Usage:
        store = UserStore(make_engine("sqlite:///hubauth.db"))
        uid = store.create_user(User(email="a@b.co", hashed_password=hash_password("secret")))
        user = store.get_by_email("A@B.co")
        store.close()
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers (signup) catch IntegrityError as the signal that a concurrent
        request registered the same address first.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(user.email),
                    hashed_password=user.hashed_password,
                    full_name=user.full_name,
                    department=user.department,
                    role=user.role,
                    email_verified=1 if user.email_verified else 0,
                    created_at=to_iso(utcnow()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup by email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update plain profile fields on an existing account.

        Accepted fields: role, full_name, department, hashed_password,
        email_verified. Counter, lock and token columns have dedicated
        conditional methods below and must not be written through here.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "email_verified" in fields:
            fields["email_verified"] = 1 if fields["email_verified"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def ping(self) -> bool:
        """Cheap liveness probe used by the health endpoint."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Lockout counter (atomic conditional updates)
    # ------------------------------------------------------------------

    def register_failed_login(self, user_id: int, policy: LockoutPolicy, now: datetime | None = None) -> FailedLogin | None:
        """Count one failed attempt and lock on threshold, in a single statement.

        Returns the FailedLogin this statement wrote, or None when the row did
        not match because the account is currently locked (possibly by a
        concurrent request that crossed the threshold a moment earlier).

        SQL semantics: every expression on the right of SET sees the row's
        values from BEFORE the update, so new_count below is computed once
        from the old counter and reused for the lock decision.

        A stale lock (locked_until in the past) starts a fresh window: the
        counter restarts at 1 and the stale deadline is cleared.
        """
        now = now or utcnow()
        now_iso = to_iso(now)
        new_count = case(
            (_users.c.locked_until.is_not(None), 1),
            else_=_users.c.failed_login_attempts + 1,
        )
        stmt = (
            _users.update()
            .where(
                (_users.c.id == user_id)
                & (_users.c.locked_until.is_(None) | (_users.c.locked_until <= now_iso))
            )
            .values(
                failed_login_attempts=new_count,
                locked_until=case(
                    (new_count >= policy.max_attempts, to_iso(policy.deadline(now))),
                    else_=None,
                ),
            )
            .returning(_users.c.failed_login_attempts, _users.c.locked_until)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).first()
            conn.commit()
        if row is None:
            return None
        return FailedLogin(attempts=row.failed_login_attempts, locked_until=from_iso(row.locked_until))

    def record_successful_login(self, user_id: int, now: datetime | None = None) -> bool:
        """Reset the counter, clear the lock, and stamp last_login.

        Conditional on the account not being locked right now, so a correct
        password racing a concurrent lock-out cannot silently undo the lock.
        Returns False if the account turned out to be locked.
        """
        now_iso = to_iso(now or utcnow())
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.locked_until.is_(None) | (_users.c.locked_until <= now_iso))
                )
                .values(failed_login_attempts=0, locked_until=None, last_login=now_iso)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Single-use tokens (verification / password reset)
    # ------------------------------------------------------------------

    def set_verification_token(self, user_id: int, token_hash: str, expires: datetime) -> None:
        """Store a new verification token hash, replacing any previous one."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(verification_token_hash=token_hash, verification_expires=to_iso(expires))
            )
            conn.commit()

    def consume_verification_token(self, token_hash: str, now: datetime | None = None) -> User | None:
        """Mark the owning account verified and burn the token in one statement.

        Returns the updated User, or None for an unknown, expired or already
        consumed token. Two concurrent consumers cannot both succeed: the
        second one's WHERE no longer matches the NULLed hash.
        """
        now_iso = to_iso(now or utcnow())
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.update()
                .where((_users.c.verification_token_hash == token_hash) & (_users.c.verification_expires > now_iso))
                .values(email_verified=1, verification_token_hash=None, verification_expires=None)
                .returning(*_users.c)
            ).first()
            conn.commit()
        return _row_to_user(row) if row is not None else None

    def set_reset_token(self, user_id: int, token_hash: str, expires: datetime) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(reset_token_hash=token_hash, reset_expires=to_iso(expires))
            )
            conn.commit()

    def consume_reset_token(self, token_hash: str, new_hashed_password: str, now: datetime | None = None) -> User | None:
        """Swap in the new password hash and burn the reset token atomically.

        Also clears lockout state: whoever holds a valid reset link has proven
        control of the mailbox. Returns the updated User or None.
        """
        now_iso = to_iso(now or utcnow())
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.update()
                .where((_users.c.reset_token_hash == token_hash) & (_users.c.reset_expires > now_iso))
                .values(
                    hashed_password=new_hashed_password,
                    reset_token_hash=None,
                    reset_expires=None,
                    password_changed_at=now_iso,
                    failed_login_attempts=0,
                    locked_until=None,
                )
                .returning(*_users.c)
            ).first()
            conn.commit()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Second factor
    # ------------------------------------------------------------------

    def set_pending_totp_secret(self, user_id: int, secret: str) -> bool:
        """Store a freshly generated secret without enabling it (PendingEnable).

        Refuses to overwrite the secret of an account whose 2FA is already
        enabled; returns False in that case.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.totp_enabled == 0))
                .values(totp_secret=secret)
            )
            conn.commit()
        return result.rowcount > 0

    def enable_totp(self, user_id: int, secret: str) -> bool:
        """Flip PendingEnable -> Enabled, only if the confirmed secret is still the pending one."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.totp_secret == secret) & (_users.c.totp_enabled == 0))
                .values(totp_enabled=1)
            )
            conn.commit()
        return result.rowcount > 0

    def disable_totp(self, user_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.totp_enabled == 1))
                .values(totp_enabled=0, totp_secret=None)
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        full_name=row.full_name,
        department=row.department,
        role=row.role,
        email_verified=bool(row.email_verified),
        totp_secret=row.totp_secret,
        totp_enabled=bool(row.totp_enabled),
        failed_login_attempts=row.failed_login_attempts,
        locked_until=from_iso(row.locked_until),
        verification_token_hash=row.verification_token_hash,
        verification_expires=row.verification_expires,
        reset_token_hash=row.reset_token_hash,
        reset_expires=row.reset_expires,
        password_changed_at=row.password_changed_at,
        created_at=row.created_at,
        last_login=row.last_login,
    )
