"""GET /auth/csrf — Return the session's CSRF token."""

from fastapi import APIRouter, Depends

from ..dependencies import get_session
from ..session import SessionManager

router = APIRouter()


@router.get("/auth/csrf")
async def get_csrf_token(session: SessionManager = Depends(get_session)):
    return {"token": session.token()}
