# ============================================================
# api/schemas/__init__.py
# API Schema Package — re-exports all response models
# ============================================================

from api.schemas.responses import (
    ComponentHealth,
    ComponentStatus,
    ErrorDetail,
    ErrorResponse,
    FaceIdentification,
    HealthResponse,
    IdentifyAllResponse,
    IdentifyResponse,
    IdentitiesResponse,
    IdentitySummary,
    LoadWarningResponse,
    ReloadResponse,
)

__all__ = [
    "ComponentHealth",
    "ComponentStatus",
    "ErrorDetail",
    "ErrorResponse",
    "FaceIdentification",
    "HealthResponse",
    "IdentifyAllResponse",
    "IdentifyResponse",
    "IdentitiesResponse",
    "IdentitySummary",
    "LoadWarningResponse",
    "ReloadResponse",
]
