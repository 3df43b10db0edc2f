"""
Liveness, readiness and status endpoints.

/health/detailed reports the profile store and the telemetry counters, so a
failing source (source.<name>.error) shows up without reading logs.
"""

from typing import Any, Dict

from fastapi import APIRouter, Request

from foryou.errors import StorageError


SERVICE_NAME = "for-you-api"

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/health/detailed")
async def detailed_health_check(request: Request) -> Dict[str, Any]:
    """
    Profile store status plus a telemetry snapshot.

    A store that raises StorageError marks the service "degraded". Feed and
    reel pages are still served in that state.
    """
    settings = request.app.state.settings
    service = request.app.state.feed_service

    store: Dict[str, Any] = {"backend": settings.effective_profile_backend, "error": None}
    try:
        store["stats"] = service.storage.get_stats()
        store["status"] = "ok"
    except StorageError as e:
        store.update(stats={}, status="error", error=str(e))

    return {
        "status": "healthy" if store["status"] == "ok" else "degraded",
        "service": SERVICE_NAME,
        "environment": settings.environment,
        "checks": {"config": "ok", "profile_store": store},
        "telemetry": service.telemetry.snapshot(),
    }


@router.get("/ready")
async def readiness_check(request: Request) -> Dict[str, str]:
    """Ready once create_app() has attached the services."""
    if getattr(request.app.state, "feed_service", None) is None:
        return {"status": "not_ready", "reason": "services_not_configured"}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    return {"status": "alive"}
