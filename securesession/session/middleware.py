"""ASGI server-side session middleware.

Stores a signed session ID in a cookie and delegates data storage to a
SessionBackend. Each request gets its own SessionHandler and SessionManager;
the manager is started before the app runs and is always closed, on response
start (or websocket accept) or, failing that, when the app returns or raises.
"""

from __future__ import annotations

import logging
from typing import Any

from itsdangerous import BadSignature, URLSafeTimedSerializer
from starlette.datastructures import MutableHeaders
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..config import Settings, get_settings
from .backend import InMemoryBackend, SessionBackend
from .handler import SessionHandler, SessionLocks
from .manager import SessionManager

logger = logging.getLogger(__name__)

# Messages that begin the reply: the last chance to send Set-Cookie.
_RESPONSE_START = ("http.response.start", "websocket.accept", "websocket.http.response.start")


class SessionMiddleware:
    """ASGI middleware for server-side sessions.

    Reads a signed session ID from a cookie, starts a SessionManager over the
    stored data and attaches it to request.state.session. When the response
    starts, or a websocket is accepted, the session is written back and the
    session cookie (plus cache headers for HTTP) is added. A websocket handler
    can use the session only before it accepts the connection.

    Extra keyword arguments (``clock``, ``random_bytes``, ``rng``) are passed
    to every SessionManager.
    """

    def __init__(
        self,
        app: ASGIApp,
        backend: SessionBackend | None = None,
        settings: Settings | None = None,
        **manager_options: Any,
    ) -> None:
        self.app = app
        self.settings = settings or get_settings()
        self.signer = URLSafeTimedSerializer(self.settings.secret, salt="securesession.cookie")
        self.backend = backend or InMemoryBackend(max_age=self.settings.gc_maxlifetime)
        self.locks = SessionLocks()
        self.manager_options = manager_options

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        conn = HTTPConnection(scope)
        handler = SessionHandler(
            self.backend,
            self.settings,
            session_id=self._load_session_id(conn),
            signer=self.signer,
            locks=self.locks,
        )
        manager = SessionManager(handler, self.settings, **self.manager_options)

        # Attach session to scope so request.state.session works
        scope["state"] = scope.get("state", {})
        scope["state"]["session"] = manager

        async def send_wrapper(message: Message) -> None:
            if message["type"] in _RESPONSE_START:
                # An open websocket must not keep holding the write lock.
                await manager.release()

                message.setdefault("headers", [])
                headers = MutableHeaders(scope=message)
                cookie = handler.pop_cookie()
                if cookie:
                    headers.append("set-cookie", cookie)
                if message["type"] != "websocket.accept":
                    for name, value in handler.cache_headers():
                        if name not in headers:
                            headers[name] = value
                handler.headers_sent = True

            await send(message)

        try:
            await manager.start()
            await self.app(scope, receive, send_wrapper)
        finally:
            await manager.release()

    def _load_session_id(self, conn: HTTPConnection) -> str | None:
        raw = conn.cookies.get(self.settings.cookie_name)
        if not raw:
            return None
        referer_check = self.settings.referer_check
        if referer_check and referer_check not in conn.headers.get("referer", ""):
            logger.info("Ignoring session cookie: referer check failed")
            return None
        try:
            return self.signer.loads(raw, max_age=self.settings.cookie_lifetime or None)
        except BadSignature:
            return None
