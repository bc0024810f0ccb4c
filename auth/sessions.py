"""
auth/sessions.py -- Session registry: per-device login sessions.

Sessions are the stateful half of HubAuth's trust model. JWTs are checked by
signature alone and cannot be recalled before they expire; a session row can
be revoked and is looked up on each request that presents X-Session-Token.
The two paths stay independent: nothing here decodes a JWT, and the token
issuer never reads this table.

IDOR guard: revoke() puts both session_id and user_id in the WHERE clause.
Another account's session id behaves exactly like an unknown id (404), so a
caller cannot probe which ids exist.

purge() is a single DELETE of expired-or-revoked rows. Rows matching that
predicate can never become live again (revoked is one-way, expiry only moves
forward in time), so it is safe to run concurrently with create/revoke.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Table, Text
from sqlalchemy.engine import Engine

from auth.errors import NotFoundError
from auth.models import Session
from auth.store import metadata
from auth.tokens import generate_secure_token, hash_token
from core.clock import to_iso, utcnow

logger = logging.getLogger("hubauth.sessions")

SESSION_TOKEN_BYTES = 48
_DEVICE_MAX = 255

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_sessions = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("device_info", Text),
    Column("ip_address", String(45)),
    Column("created_at", String(32), nullable=False),
    Column("last_active", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Index("ix_sessions_user_id", "user_id"),
)


class SessionRegistry:
    """Repository for Session rows.

    Usage:
        registry = SessionRegistry(engine, ttl_seconds=7 * 24 * 3600)
        session, raw_token = registry.create(user_id, "Firefox", "10.0.0.5")
        registry.list_active(user_id)
        registry.revoke(session.id, user_id)
    """

    def __init__(self, engine: Engine, ttl_seconds: int = 7 * 24 * 3600, touch_interval_seconds: int = 300) -> None:
        self.engine = engine
        self.ttl = timedelta(seconds=ttl_seconds)
        self.touch_interval = timedelta(seconds=touch_interval_seconds)
        metadata.create_all(engine)

    def create(
        self,
        user_id: int,
        device_info: str | None,
        ip_address: str | None,
        now: datetime | None = None,
    ) -> tuple[Session, str]:
        """Insert a session and return (Session, raw_token).

        The raw token is shown to the caller ONCE; only its hash is stored.
        """
        now = now or utcnow()
        raw_token = generate_secure_token(SESSION_TOKEN_BYTES)
        session = Session(
            user_id=user_id,
            token_hash=hash_token(raw_token),
            device_info=(device_info or "")[:_DEVICE_MAX] or None,
            ip_address=ip_address,
            created_at=to_iso(now),
            last_active=to_iso(now),
            expires_at=to_iso(now + self.ttl),
        )
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    token_hash=session.token_hash,
                    device_info=session.device_info,
                    ip_address=session.ip_address,
                    created_at=session.created_at,
                    last_active=session.last_active,
                    expires_at=session.expires_at,
                    revoked=0,
                )
            )
            conn.commit()
            session.id = result.inserted_primary_key[0]
        logger.info("Session %s created for user %s from %s", session.id, user_id, ip_address or "unknown")
        return session, raw_token

    def get_active_by_token(self, raw_token: str, now: datetime | None = None) -> Session | None:
        """Resolve a presented session token. None if unknown, revoked or expired."""
        now_iso = to_iso(now or utcnow())
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where(
                    (_sessions.c.token_hash == hash_token(raw_token))
                    & (_sessions.c.revoked == 0)
                    & (_sessions.c.expires_at > now_iso)
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_active(self, user_id: int, now: datetime | None = None) -> list[Session]:
        """Live sessions of one account, most recently active first."""
        now_iso = to_iso(now or utcnow())
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.revoked == 0) & (_sessions.c.expires_at > now_iso))
                .order_by(_sessions.c.last_active.desc(), _sessions.c.id.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def revoke(self, session_id: int, user_id: int) -> None:
        """Revoke one session owned by user_id.

        Raises NotFoundError if the id is unknown, belongs to someone else, or
        is already revoked -- deliberately indistinguishable cases.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.user_id == user_id) & (_sessions.c.revoked == 0))
                .values(revoked=1)
            )
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError("Session not found or already revoked.")
        logger.info("Session %s revoked by user %s", session_id, user_id)

    def revoke_all(self, user_id: int) -> int:
        """Revoke every live session of an account. Returns how many were revoked."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.revoked == 0))
                .values(revoked=1)
            )
            conn.commit()
        logger.info("Revoked %d session(s) for user %s", result.rowcount, user_id)
        return result.rowcount

    def touch(self, session_id: int, now: datetime | None = None) -> bool:
        """Bump last_active, at most once per touch interval.

        The staleness check is in the WHERE clause, so most calls are a no-op
        UPDATE matching zero rows rather than a write per request. Returns
        True if a write happened.
        """
        now = now or utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.id == session_id)
                    & (_sessions.c.revoked == 0)
                    & (_sessions.c.last_active < to_iso(now - self.touch_interval))
                )
                .values(last_active=to_iso(now))
            )
            conn.commit()
        return result.rowcount > 0

    def purge(self, now: datetime | None = None) -> int:
        """Delete expired or revoked rows. Returns the number removed."""
        now_iso = to_iso(now or utcnow())
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.expires_at <= now_iso) | (_sessions.c.revoked == 1))
            )
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        device_info=row.device_info,
        ip_address=row.ip_address,
        created_at=row.created_at,
        last_active=row.last_active,
        expires_at=row.expires_at,
        revoked=bool(row.revoked),
    )
