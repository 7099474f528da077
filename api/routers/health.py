# ============================================================
# Face Identity Engine
# api/routers/health.py
# ============================================================
# GET /api/v1/health — liveness + readiness check endpoint.
#
# Reports the engine's models, the snapshot being served and
# whether hot reload is running.
#
# Overall status:
#   ok        — snapshot served, hot reload active
#   degraded  — snapshot served, hot reload off or dormant
#   down      — no engine, or database not ready
# ============================================================

from __future__ import annotations

import time
from typing import Dict

from fastapi import APIRouter, Request

from api.schemas.responses import (
    ComponentHealth,
    ComponentStatus,
    HealthResponse,
)
from core.recognizer.face_database import DatabaseState
from utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])

# Module-level start time for uptime calculation
_START_TIME: float = time.perf_counter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description=(
        "Returns the overall API health status, the identity database "
        "state and version, and whether hot reload is active."
    ),
)
async def health_check(request: Request) -> HealthResponse:
    """Liveness + readiness probe."""
    uptime = time.perf_counter() - _START_TIME
    engine = getattr(request.app.state, "engine", None)

    components: Dict[str, ComponentHealth] = {}
    db_state = "uninitialized"
    db_version = None
    watching = False

    if engine is None:
        overall = ComponentStatus.DOWN
        components["engine"] = ComponentHealth(
            status=ComponentStatus.DOWN,
            loaded=False,
            detail="Engine not initialised.",
        )
    else:
        components["detector"] = _model_health(engine.detector)
        components["recognizer"] = _model_health(engine.recognizer)

        database = engine.database
        db_state = database.state.value
        db_version = database.version
        watching = database.is_watching

        if database.state is DatabaseState.READY:
            components["database"] = ComponentHealth(
                status=ComponentStatus.OK,
                loaded=True,
                detail=f"{database.stats()['identities']} identities",
            )
        else:
            components["database"] = ComponentHealth(
                status=ComponentStatus.DOWN,
                loaded=False,
                detail=f"Database state is {db_state!r}.",
            )

        components["watcher"] = ComponentHealth(
            status=ComponentStatus.OK if watching else ComponentStatus.DEGRADED,
            loaded=watching,
            detail=None if watching else "Hot reload is not active.",
        )

        if any(c.status == ComponentStatus.DOWN for c in components.values()):
            overall = ComponentStatus.DOWN
        elif any(c.status == ComponentStatus.DEGRADED for c in components.values()):
            overall = ComponentStatus.DEGRADED
        else:
            overall = ComponentStatus.OK

    try:
        from config.settings import settings  # noqa: PLC0415
        version     = settings.app_version
        environment = settings.environment
    except Exception:
        version     = "unknown"
        environment = "unknown"

    logger.debug(f"Health check: overall={overall.value} uptime={uptime:.1f}s")

    return HealthResponse(
        status=overall,
        version=version,
        environment=environment,
        uptime_seconds=uptime,
        database_state=db_state,
        database_version=db_version,
        watching=watching,
        components=components,
    )


def _model_health(model) -> ComponentHealth:
    if model.is_loaded:
        return ComponentHealth(status=ComponentStatus.OK, loaded=True, detail=model.model_name)
    return ComponentHealth(
        status=ComponentStatus.DOWN,
        loaded=False,
        detail=f"{model.__class__.__name__} model is not loaded.",
    )
