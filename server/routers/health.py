"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (is the room registry wired up?)
- /metrics - Room, player and connection counts for monitoring
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from room import RoomStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_room_manager = None
_fanout = None
_admin_service = None


def set_health_dependencies(
    room_manager=None,
    fanout=None,
    admin_service=None,
):
    """Set dependencies for health checks."""
    global _room_manager, _fanout, _admin_service
    _room_manager = room_manager
    _fanout = fanout
    _admin_service = admin_service


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    Always 200 while the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can the app accept connections?

    Returns 503 until the room registry and fanout have been set.
    """
    checks = {
        "room_manager": {"status": "ok" if _room_manager is not None else "not_configured"},
        "fanout": {"status": "ok" if _fanout is not None else "not_configured"},
    }
    ready = all(check["status"] == "ok" for check in checks.values())

    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ok" if ready else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@router.get("/metrics")
async def metrics():
    """Expose operational metrics for dashboards and alerting."""
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if _room_manager is not None:
        rooms = list(_room_manager.rooms.values())
        metrics_data.update({
            "active_rooms": len(rooms),
            "total_players": sum(len(room.seating) for room in rooms),
            "connected_players": sum(room.connected_count() for room in rooms),
            "games_in_progress": sum(1 for room in rooms if room.status == RoomStatus.PLAYING),
            "games_finished": sum(1 for room in rooms if room.status == RoomStatus.FINISHED),
        })

    if _fanout is not None:
        metrics_data.update({
            "connected_websockets": _fanout.connection_count(),
            "observers": _fanout.observer_count(),
        })

    if _admin_service is not None:
        metrics_data["admin_sessions"] = _admin_service.session_count()

    return metrics_data
