"""
tests/conftest.py -- Shared test fixtures for HubAuth integration tests.

This module provides:
  - RecordingMailer: Mailer double that keeps messages in memory
  - make_stack(): store + registry + service on an isolated in-memory DB
  - _patch_lifespan(): wires the test stack into app.state, bypassing real startup
  - api_client: (client, service, mailer) with the CSRF cookie/header pair set
  - signup / mailed_token: helpers for the flow tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any auth/core import: get_settings()
is cached on first call and several modules read it at import time.
"""

from __future__ import annotations

import asyncio
import itertools
import os
import re
import uuid
from collections.abc import Callable, Generator
from concurrent.futures import Future
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ADMIN_EMAIL", "admin@swahilipothub.co.ke")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.service import AuthService
from auth.sessions import SessionRegistry
from auth.store import UserStore, make_engine
from core.config import get_settings
from core.mailer import Mailer

PASSWORD = "CorrectHorse9"

_TOKEN_RE = re.compile(r"token=([0-9a-f]+)")
_counter = itertools.count(1)


# ---------------------------------------------------------------------------
# Mailer double
# ---------------------------------------------------------------------------


@dataclass
class SentMail:
    recipient: str
    subject: str
    text: str
    html: str


class RecordingMailer(Mailer):
    """Synchronous in-memory mailer. dispatch() records instead of sending."""

    def __init__(self) -> None:
        super().__init__(max_workers=1)
        self.outbox: list[SentMail] = []

    def dispatch(self, recipient: str, subject: str, text: str, html: str) -> Future:
        self.outbox.append(SentMail(recipient, subject, text, html))
        future: Future = Future()
        future.set_result(None)
        return future

    def to(self, recipient: str) -> list[SentMail]:
        return [m for m in self.outbox if m.recipient == recipient]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_url(name: str) -> str:
    """Named shared-memory SQLite URI, unique per caller-supplied name."""
    return f"sqlite:///file:test_{name}?mode=memory&cache=shared&uri=true"


def make_stack(db_name: str) -> tuple[UserStore, SessionRegistry, RecordingMailer, AuthService]:
    """Create an isolated store/registry/service chain on a named in-memory DB."""
    settings = get_settings()
    engine = make_engine(memory_url(db_name))
    users = UserStore(engine)
    sessions = SessionRegistry(
        engine,
        ttl_seconds=settings.session_expire_seconds,
        touch_interval_seconds=settings.session_touch_interval_seconds,
    )
    mailer = RecordingMailer()
    return users, sessions, mailer, AuthService(users, sessions, mailer, settings)


def _patch_lifespan(users: UserStore, sessions: SessionRegistry, mailer: Mailer, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = users
        app.state.sessions = sessions
        app.state.mailer = mailer
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def unique_email(prefix: str = "member") -> str:
    return f"{prefix}{next(_counter)}-{uuid.uuid4().hex[:6]}@example.org"


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, AuthService, RecordingMailer], None, None]:
    """Yield (client, service, mailer) for API integration tests.

    The client already holds the CSRF cookie, and X-CSRF-Token is set as a
    default header, so tests exercise the guard on every POST/DELETE without
    repeating the handshake.
    """
    users, sessions, mailer, service = make_stack(f"{request.module.__name__}_{uuid.uuid4().hex[:8]}")
    app.router.lifespan_context = _patch_lifespan(users, sessions, mailer, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        resp = client.get("/api/v1/csrf-token")
        assert resp.status_code == 200
        client.headers["X-CSRF-Token"] = resp.json()["csrfToken"]
        yield client, service, mailer

    users.close()


@pytest.fixture
def signup(api_client) -> Callable[..., dict]:
    """Factory: register a fresh account over HTTP and return its signup body plus credentials."""
    client, _service, _mailer = api_client

    def _signup(email: str | None = None, password: str = PASSWORD, full_name: str = "Test Member") -> dict:
        email = email or unique_email()
        resp = client.post(
            "/api/v1/auth/signup",
            json={"email": email, "password": password, "fullName": full_name},
        )
        assert resp.status_code == 201, resp.text
        return {"email": email, "password": password, **resp.json()}

    return _signup


@pytest.fixture
def mailed_token(api_client) -> Callable[[str, str], str]:
    """Extract the raw token from the latest mail to recipient whose subject contains `kind`."""
    _client, _service, mailer = api_client

    def _mailed_token(recipient: str, kind: str) -> str:
        matches = [m for m in mailer.to(recipient) if kind in m.subject]
        assert matches, f"no '{kind}' mail sent to {recipient}"
        found = _TOKEN_RE.search(matches[-1].text)
        assert found, matches[-1].text
        return found.group(1)

    return _mailed_token
