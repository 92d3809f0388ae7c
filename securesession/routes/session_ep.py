"""POST /auth/session — Sign a user in."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..dependencies import get_session, require_csrf
from ..session import SessionManager

logger = logging.getLogger(__name__)

router = APIRouter()


class SessionRequest(BaseModel):
    user_id: str = Field(min_length=1)


@router.post("/auth/session")
async def create_session(
    body: SessionRequest,
    session: SessionManager = Depends(get_session),
    _csrf: None = Depends(require_csrf),
):
    # New privilege level, new id: defeats session fixation.
    await session.regenerate_id()
    session.set("user_id", body.user_id)
    session.set_flash("status", f"Signed in as {body.user_id}", "success")
    logger.info("User signed in")
    return {"success": True}
