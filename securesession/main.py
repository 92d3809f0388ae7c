"""Demo FastAPI application wired with server-side sessions.

Shows the intended use of the session manager: CSRF-protected sign-in with
id rotation, post/redirect/get flash messages, and logout.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI

from .config import Settings, get_settings
from .routes import flash, health, logout, me, session_ep, token
from .session import DynamoDBSessionBackend, InMemoryBackend, SessionBackend, SessionMiddleware

logger = logging.getLogger(__name__)


def _default_backend(s: Settings) -> SessionBackend:
    if s.backend == "dynamodb":
        return DynamoDBSessionBackend(
            table_name=s.dynamodb_table,
            max_age=s.gc_maxlifetime,
            endpoint_url=s.dynamodb_endpoint,
            region_name=s.dynamodb_region,
        )
    if s.backend != "memory":
        logger.warning("Unknown session backend %r, using in-memory sessions", s.backend)
    return InMemoryBackend(max_age=s.gc_maxlifetime)


def create_app(
    *,
    session_backend: SessionBackend | None = None,
    settings: Settings | None = None,
    **manager_options: Any,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        session_backend: Custom session backend (default: chosen by settings).
        settings: Session settings (default: from environment).
        **manager_options: Passed to every SessionManager (clock, rng, ...).
    """
    s = settings or get_settings()
    app = FastAPI(title="securesession demo")

    backend = session_backend or _default_backend(s)
    app.state.session_backend_name = type(backend).__name__
    app.add_middleware(SessionMiddleware, backend=backend, settings=s, **manager_options)

    app.include_router(health.router)
    app.include_router(token.router)
    app.include_router(session_ep.router)
    app.include_router(me.router)
    app.include_router(logout.router)
    app.include_router(flash.router)

    return app
