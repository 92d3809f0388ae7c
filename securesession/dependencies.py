"""FastAPI dependency injection: session access, CSRF, destroy."""

from __future__ import annotations

from fastapi import HTTPException, Request

from . import audit
from .session import SessionManager

SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}
CSRF_HEADER = "x-csrf-token"
CSRF_FIELD = "_token"


def get_session(request: Request) -> SessionManager:
    """Get the session manager from request state."""
    return request.state.session


async def require_csrf(request: Request) -> None:
    """Require a valid CSRF token on state-changing requests.

    The token is read from the X-CSRF-Token header, or from the ``_token``
    field of a form body.
    """
    if request.method in SAFE_METHODS:
        return

    session: SessionManager = request.state.session
    candidate = request.headers.get(CSRF_HEADER)
    if candidate is None:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
            form = await request.form()
            value = form.get(CSRF_FIELD)
            candidate = value if isinstance(value, str) else None

    if candidate is None or not session.validate_token(candidate):
        audit.session_event(
            activity_id=audit.SessionActivity.CSRF_CHECK,
            status_id=audit.Status.FAILURE,
            severity_id=audit.Severity.MEDIUM,
            session_id=session.session_id,
            hash_function=session.settings.hash_function,
            message=f"CSRF validation failed for {request.method} {request.url.path}",
        )
        raise HTTPException(
            status_code=403,
            detail={
                "error": "CSRF validation failed",
                "message": "Missing CSRF token" if candidate is None else "Invalid or expired CSRF token",
            },
        )


async def destroy_session(request: Request) -> None:
    """Destroy the session and expire its cookie."""
    await request.state.session.destroy()


def require_user(request: Request) -> str:
    """Require a signed-in user in the session."""
    user_id = request.state.session.get("user_id")
    if not user_id:
        raise HTTPException(status_code=401, detail={"error": "Not authenticated"})
    return user_id
