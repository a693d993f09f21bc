"""Liveness and runtime status endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from mediatracker.config import settings

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Liveness plus the startup probe results for each remote service."""
    return {
        "status": "ok",
        "version": request.app.version,
        "store_backend": settings.store_backend,
        "checked_at": datetime.now(timezone.utc).isoformat(),
        "integrations": getattr(request.app.state, "integrations", {}),
    }


@router.get("/stats")
async def session_stats(request: Request):
    """Signed-in sessions and how many media records their projections hold."""
    manager = getattr(request.app.state, "sessions", None)
    active = list(manager.sessions.values()) if manager else []
    return {
        "sessions": len(active),
        "media_records_loaded": sum(len(s.media) for s in active),
    }
