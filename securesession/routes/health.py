"""GET /health — Liveness check."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "session_backend": request.app.state.session_backend_name,
    }
