"""Tests for the ASGI session middleware."""

import asyncio
import time

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from securesession.config import Settings
from securesession.session import InMemoryBackend, SessionMiddleware
from securesession.session.manager import LAST_REGENERATION_KEY

BASE_URL = "https://testserver"


@pytest.fixture
def backend():
    return InMemoryBackend()


def _simple_app(backend, settings):
    """Minimal app for testing session middleware in isolation."""
    app = FastAPI()

    @app.get("/set")
    async def set_value(request: Request):
        request.state.session.set("key", "value")
        return {"ok": True}

    @app.get("/get")
    async def get_value(request: Request):
        return {"key": request.state.session.get("key")}

    @app.get("/id")
    async def get_id(request: Request):
        return {"id": request.state.session.session_id}

    @app.get("/destroy")
    async def destroy(request: Request):
        await request.state.session.destroy()
        return {"ok": True}

    @app.get("/close-early")
    async def close_early(request: Request):
        session = request.state.session
        session.set("key", "early")
        await session.close_write()
        return {"started": session.is_started}

    @app.get("/boom")
    async def boom(request: Request):
        request.state.session.set("key", "from-boom")
        raise RuntimeError("boom")

    app.add_middleware(SessionMiddleware, backend=backend, settings=settings, rng=lambda: 1.0)
    return app


@pytest.fixture
def session_client(backend, test_settings):
    return TestClient(_simple_app(backend, test_settings), base_url=BASE_URL, cookies={})


def test_new_session_sets_cookie(session_client):
    resp = session_client.get("/set")
    assert resp.status_code == 200
    assert "session" in resp.cookies


def test_session_persists_across_requests(session_client):
    session_client.get("/set")
    resp = session_client.get("/get")
    assert resp.json()["key"] == "value"


def test_session_empty_by_default(session_client):
    resp = session_client.get("/get")
    assert resp.json()["key"] is None


def test_session_id_stable_between_requests(session_client):
    first = session_client.get("/id").json()["id"]
    second = session_client.get("/id").json()["id"]
    assert first == second


def test_cookie_not_reissued_for_known_session(session_client):
    session_client.get("/set")
    resp = session_client.get("/get")
    assert "set-cookie" not in resp.headers


def test_session_destroy_clears_data(session_client):
    session_client.get("/set")
    resp = session_client.get("/destroy")
    assert "Max-Age=0" in resp.headers.get("set-cookie", "")
    resp = session_client.get("/get")
    assert resp.json()["key"] is None


def test_session_cookie_flags(session_client):
    resp = session_client.get("/set")
    cookie_header = resp.headers.get("set-cookie", "")
    assert "HttpOnly" in cookie_header
    assert "Secure" in cookie_header
    assert "SameSite=Lax" in cookie_header
    assert "Path=/" in cookie_header


def test_nocache_headers_on_session_responses(session_client):
    resp = session_client.get("/get")
    assert resp.headers["cache-control"] == "no-store, no-cache, must-revalidate"
    assert resp.headers["pragma"] == "no-cache"


def test_invalid_cookie_creates_new_session(session_client):
    session_client.cookies.set("session", "garbage-value")
    resp = session_client.get("/get")
    assert resp.status_code == 200
    assert resp.json()["key"] is None
    assert "set-cookie" in resp.headers


def test_cookie_signed_with_other_secret_is_ignored(backend, test_settings, session_client):
    session_client.get("/set")
    other = TestClient(
        _simple_app(backend, Settings(secret="another-secret")),
        base_url=BASE_URL,
        cookies=dict(session_client.cookies),
    )
    resp = other.get("/get")
    assert resp.json()["key"] is None


def test_early_close_persists_data(session_client):
    resp = session_client.get("/close-early")
    assert resp.json() == {"started": False}
    resp = session_client.get("/get")
    assert resp.json()["key"] == "early"


def test_app_error_still_releases_session(backend, test_settings):
    client = TestClient(
        _simple_app(backend, test_settings),
        base_url=BASE_URL,
        cookies={},
        raise_server_exceptions=False,
    )
    client.get("/set")
    resp = client.get("/boom")
    assert resp.status_code == 500
    # The lock was released, so the next request can start the same session.
    resp = client.get("/get")
    assert resp.status_code == 200


def test_referer_check(backend):
    settings = Settings(secret="s", referer_check="example.com")
    client = TestClient(_simple_app(backend, settings), base_url=BASE_URL, cookies={})
    client.get("/set", headers={"referer": "https://example.com/form"})

    resp = client.get("/get", headers={"referer": "https://example.com/page"})
    assert resp.json()["key"] == "value"

    resp = client.get("/get", headers={"referer": "https://evil.test/"})
    assert resp.json()["key"] is None


# ── Websockets ────────────────────────────────────────────────────────────

WS_CONNECT = {"type": "websocket.connect"}
WS_DISCONNECT = {"type": "websocket.disconnect", "code": 1000}


async def _user_app(scope, receive, send):
    """Raw ASGI app: echoes user_id over HTTP, idles on websockets."""
    session = scope["state"]["session"]
    if scope["type"] == "websocket":
        await receive()
        await send({"type": "websocket.accept"})
        while (await receive())["type"] != "websocket.disconnect":
            pass
        return
    body = str(session.get("user_id")).encode()
    await send({"type": "http.response.start", "status": 200, "headers": []})
    await send({"type": "http.response.body", "body": body})


def _scope(kind, cookie):
    return {
        "type": kind,
        "path": "/",
        "method": "GET",
        "scheme": "https" if kind == "http" else "wss",
        "query_string": b"",
        "headers": [(b"cookie", cookie.encode())],
    }


async def _http_get(middleware, cookie):
    sent = []

    async def receive():
        return {"type": "http.request", "body": b""}

    async def send(message):
        sent.append(message)

    await middleware(_scope("http", cookie), receive, send)
    return sent


async def _signed_in(backend, settings, clock):
    middleware = SessionMiddleware(_user_app, backend=backend, settings=settings, clock=clock, rng=lambda: 1.0)
    await backend.save("alice-sid", {"user_id": "alice", LAST_REGENERATION_KEY: clock.now})
    return middleware, f"session={middleware.signer.dumps('alice-sid')}"


@pytest.mark.asyncio
async def test_websocket_accept_carries_rotated_cookie(backend, test_settings, clock):
    middleware, cookie = await _signed_in(backend, test_settings, clock)
    clock.advance(301)

    inbox = asyncio.Queue()
    inbox.put_nowait(WS_CONNECT)
    inbox.put_nowait(WS_DISCONNECT)
    sent = []

    async def send(message):
        sent.append(message)

    await middleware(_scope("websocket", cookie), inbox.get, send)

    accept = sent[0]
    assert accept["type"] == "websocket.accept"
    cookies = [value.decode() for name, value in accept["headers"] if name == b"set-cookie"]
    assert len(cookies) == 1
    new_id = middleware.signer.loads(cookies[0].split(";")[0].split("=", 1)[1])
    assert new_id != "alice-sid"
    assert await backend.load("alice-sid") is None

    # The rotated cookie still leads to the signed-in session.
    resp = await _http_get(middleware, f"session={middleware.signer.dumps(new_id)}")
    assert resp[1]["body"] == b"alice"


@pytest.mark.asyncio
async def test_websocket_without_rotation_sends_no_cookie(backend, test_settings, clock):
    middleware, cookie = await _signed_in(backend, test_settings, clock)

    inbox = asyncio.Queue()
    inbox.put_nowait(WS_CONNECT)
    inbox.put_nowait(WS_DISCONNECT)
    sent = []

    async def send(message):
        sent.append(message)

    await middleware(_scope("websocket", cookie), inbox.get, send)
    assert sent[0]["type"] == "websocket.accept"
    assert not any(name == b"set-cookie" for name, _ in sent[0]["headers"])


@pytest.mark.asyncio
async def test_http_request_not_blocked_by_open_websocket(backend, test_settings, clock):
    middleware, cookie = await _signed_in(backend, test_settings, clock)

    inbox = asyncio.Queue()
    inbox.put_nowait(WS_CONNECT)
    sent = []

    async def send(message):
        sent.append(message)

    ws = asyncio.create_task(middleware(_scope("websocket", cookie), inbox.get, send))
    for _ in range(100):
        if sent:
            break
        await asyncio.sleep(0.01)
    assert sent[0]["type"] == "websocket.accept"
    assert not middleware.locks.locked("alice-sid")

    resp = await asyncio.wait_for(_http_get(middleware, cookie), timeout=1.0)
    assert resp[1]["body"] == b"alice"

    inbox.put_nowait(WS_DISCONNECT)
    await asyncio.wait_for(ws, timeout=1.0)


@pytest.mark.asyncio
async def test_inmemory_backend_expiry():
    backend = InMemoryBackend(max_age=1)
    await backend.save("test-id", {"key": "value"})

    data = await backend.load("test-id")
    assert data == {"key": "value"}

    # Simulate expiry by manipulating the internal store
    backend._store["test-id"] = ({"key": "value"}, time.time() - 2)

    data = await backend.load("test-id")
    assert data is None


@pytest.mark.asyncio
async def test_inmemory_backend_copies_data():
    backend = InMemoryBackend()
    data = {"nested": {"n": 1}}
    await backend.save("test-id", data)
    data["nested"]["n"] = 2

    loaded = await backend.load("test-id")
    assert loaded == {"nested": {"n": 1}}
    loaded["nested"]["n"] = 3
    assert (await backend.load("test-id")) == {"nested": {"n": 1}}


@pytest.mark.asyncio
async def test_inmemory_backend_delete():
    backend = InMemoryBackend()
    await backend.save("test-id", {"key": "value"})
    await backend.delete("test-id")
    data = await backend.load("test-id")
    assert data is None


@pytest.mark.asyncio
async def test_inmemory_backend_delete_nonexistent():
    backend = InMemoryBackend()
    # Should not raise
    await backend.delete("nonexistent")


@pytest.mark.asyncio
async def test_inmemory_backend_gc():
    backend = InMemoryBackend()
    await backend.save("fresh", {})
    backend._store["stale"] = ({}, time.time() - 100)
    assert await backend.gc(max_lifetime=50) == 1
    assert "stale" not in backend._store
    assert "fresh" in backend._store
