"""Health check endpoints."""

from fastapi import APIRouter, Request

from coursegate.config import get_settings


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness probe - checks if the application is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request) -> dict[str, str | bool | int]:
    """Readiness probe - ready once the session registry is wired."""
    settings = get_settings()
    registry = getattr(request.app.state, "session_registry", None)
    return {
        "status": "ready" if registry is not None else "starting",
        "mode": settings.mode,
        "environment": settings.environment,
        "open_sessions": len(registry) if registry is not None else 0,
    }


@router.get("")
async def health() -> dict[str, str]:
    """General health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "mode": settings.mode,
    }
