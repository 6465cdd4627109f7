"""Health check endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter

from tasklens import __version__

router = APIRouter()

_startup_time = datetime.now(timezone.utc)


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.
    Returns 200 if the service is running.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "healthy",
        "service": "tasklens",
        "version": __version__,
        "timestamp": now.isoformat(),
        "uptime_seconds": (now - _startup_time).total_seconds(),
    }
