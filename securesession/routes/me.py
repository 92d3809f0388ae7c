"""GET /auth/me — Return the signed-in user."""

from fastapi import APIRouter, Depends

from ..dependencies import require_user

router = APIRouter()


@router.get("/auth/me")
async def me(user_id: str = Depends(require_user)):
    return {"user_id": user_id}
