"""POST /flash, GET /flash — Post/redirect/get with a flash message."""

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from ..dependencies import get_session, require_csrf
from ..session import SessionManager

router = APIRouter()

FLASH_SLOT = "status"


class FlashRequest(BaseModel):
    message: str
    type: str = "info"


@router.post("/flash")
async def post_flash(
    body: FlashRequest,
    session: SessionManager = Depends(get_session),
    _csrf: None = Depends(require_csrf),
):
    session.set_flash(FLASH_SLOT, body.message, body.type)
    return RedirectResponse("/flash", status_code=303)


@router.get("/flash")
async def get_flash(
    type: str | None = None,
    session: SessionManager = Depends(get_session),
):
    if not session.has_flash(FLASH_SLOT, type):
        return {"message": None}
    return {"message": session.get_flash(FLASH_SLOT)}
