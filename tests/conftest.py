"""Shared fixtures for the securesession test suite."""

from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from securesession.config import Settings, override_settings
from securesession.main import create_app
from securesession.session import InMemoryBackend, SessionHandler, SessionLocks, SessionManager

# Secure cookies only round-trip over https.
BASE_URL = "https://testserver"


class FakeClock:
    """Whole-second clock that only moves when told to."""

    def __init__(self, now: int = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


# ── Settings ──────────────────────────────────────────────────────────────

@pytest.fixture
def test_settings() -> Settings:
    return Settings(secret="test-secret-key-for-sessions")


@pytest.fixture(autouse=True)
def _process_settings(test_settings):
    override_settings(test_settings)
    yield
    override_settings(None)


# ── Manager factory ───────────────────────────────────────────────────────

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def locks() -> SessionLocks:
    return SessionLocks()


@pytest.fixture
def make_manager(session_backend, test_settings, clock, locks):
    """Factory: a SessionManager for one simulated request.

    Pass the previous request's ``session_id`` to continue a session. gc is
    disabled unless a test passes its own ``rng``.
    """

    def _make(session_id: str | None = None, **options: Any) -> SessionManager:
        handler = SessionHandler(
            session_backend,
            test_settings,
            session_id=session_id,
            locks=locks,
        )
        options.setdefault("clock", clock)
        options.setdefault("rng", lambda: 1.0)
        return SessionManager(handler, test_settings, **options)

    return _make


@pytest.fixture
def next_request(make_manager):
    """Close ``manager`` and start a new one over the same session."""

    async def _next(manager: SessionManager, **options: Any) -> SessionManager:
        session_id = manager.session_id
        assert await manager.close_write()
        follow_up = make_manager(session_id, **options)
        await follow_up.start()
        return follow_up

    return _next


# ── App & Client ──────────────────────────────────────────────────────────

@pytest.fixture
def app(test_settings, session_backend):
    return create_app(session_backend=session_backend, settings=test_settings)


@pytest.fixture
def client(app) -> TestClient:
    """TestClient with cookie persistence."""
    return TestClient(app, base_url=BASE_URL, cookies={})


@pytest.fixture
def csrf_headers(client) -> dict[str, str]:
    """CSRF header carrying the client's current session token."""
    resp = client.get("/auth/csrf")
    assert resp.status_code == 200
    return {"X-CSRF-Token": resp.json()["token"]}


@pytest.fixture
def auth_session(client, csrf_headers):
    """Sign in as alice and return the client."""
    resp = client.post("/auth/session", json={"user_id": "alice"}, headers=csrf_headers)
    assert resp.status_code == 200
    return client
