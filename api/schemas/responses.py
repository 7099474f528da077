# Pydantic v2 response models for all FastAPI endpoints.
#
# These models define the exact JSON structure returned by:
#   GET  /api/v1/health
#   POST /api/v1/identify
#   POST /api/v1/identify/all
#   GET  /api/v1/identities
#   POST /api/v1/database/reload

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ComponentStatus(str, Enum):
    """Status of an individual system component."""

    OK = "ok"
    DEGRADED = "degraded"
    DOWN = "down"


class ComponentHealth(BaseModel):
    """Health status for a single engine component."""

    status: ComponentStatus = Field(..., description="Component health status.")
    loaded: bool = Field(..., description="Whether the model/component is loaded.")
    detail: Optional[str] = Field(None, description="Extra info or error message.")


class HealthResponse(BaseModel):
    """
    Response for GET /api/v1/health.

    ``down`` when no snapshot is being served, ``degraded`` when
    queries work but hot reload is off, ``ok`` otherwise.
    """

    status: ComponentStatus = Field(
        ..., description="Overall API health: 'ok' | 'degraded' | 'down'."
    )
    version: str = Field(..., description="Application version string.")
    environment: str = Field(..., description="Deployment environment (development / production).")
    uptime_seconds: float = Field(..., description="Seconds since the API process started.")
    database_state: str = Field(..., description="'uninitialized' | 'ready' | 'stopped'.")
    database_version: Optional[int] = Field(
        None, description="Version of the snapshot currently being served."
    )
    watching: bool = Field(..., description="Whether hot reload is active.")
    components: Dict[str, ComponentHealth] = Field(
        default_factory=dict,
        description="Per-component health map keyed by component name.",
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "ok",
                "version": "1.0.0",
                "environment": "development",
                "uptime_seconds": 42.3,
                "database_state": "ready",
                "database_version": 3,
                "watching": True,
                "components": {
                    "detector": {"status": "ok", "loaded": True, "detail": None},
                    "recognizer": {"status": "ok", "loaded": True, "detail": None},
                    "database": {"status": "ok", "loaded": True, "detail": "12 identities"},
                    "watcher": {"status": "ok", "loaded": True, "detail": None},
                },
            }
        }
    }


class IdentifyResponse(BaseModel):
    """Response for POST /api/v1/identify."""

    name: str = Field(..., description="Matched identity name, or 'unknown'.")
    score: float = Field(
        ..., ge=-1.0, le=1.0, description="Best cosine similarity found (reported even when rejected)."
    )
    is_known: bool = Field(..., description="True if the score met the threshold.")
    threshold_used: float = Field(..., description="Cosine similarity threshold that was applied.")
    database_version: int = Field(..., description="Snapshot version the query was matched against.")

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Alice",
                "score": 0.87,
                "is_known": True,
                "threshold_used": 0.4,
                "database_version": 3,
            }
        }
    }


class FaceIdentification(BaseModel):
    """One face's result inside an IdentifyAllResponse."""

    face_index: int = Field(..., description="Position of the face in detection order.")
    name: str = Field(..., description="Matched identity name, or 'unknown'.")
    score: float = Field(..., ge=-1.0, le=1.0, description="Best cosine similarity found.")
    is_known: bool = Field(..., description="True if the score met the threshold.")


class IdentifyAllResponse(BaseModel):
    """Response for POST /api/v1/identify/all."""

    num_faces: int = Field(..., description="Number of faces detected.")
    num_known: int = Field(..., description="Faces matched to a known identity.")
    faces: List[FaceIdentification] = Field(
        default_factory=list, description="Per-face results in detection order."
    )
    threshold_used: float = Field(..., description="Cosine similarity threshold that was applied.")
    database_version: int = Field(..., description="Snapshot version the query was matched against.")


class IdentitySummary(BaseModel):
    """Name and reference count of one identity."""

    name: str = Field(..., description="Identity name (directory name).")
    num_descriptors: int = Field(..., ge=1, description="Accepted reference photos.")


class IdentitiesResponse(BaseModel):
    """Response for GET /api/v1/identities."""

    count: int = Field(..., description="Number of identities.")
    total_descriptors: int = Field(..., description="Reference descriptors across all identities.")
    database_version: int = Field(..., description="Snapshot version listed.")
    identities: List[IdentitySummary] = Field(default_factory=list)


class LoadWarningResponse(BaseModel):
    """One entry skipped during a database load."""

    kind: str = Field(..., description="Warning category (e.g. 'no_face').")
    path: str = Field(..., description="File or directory concerned.")
    identity: Optional[str] = Field(None, description="Identity the entry belongs to.")
    message: str = Field("", description="Human-readable description.")


class ReloadResponse(BaseModel):
    """Response for POST /api/v1/database/reload."""

    installed: bool = Field(..., description="False if a newer snapshot won the race.")
    database_version: Optional[int] = Field(None, description="Version now being served.")
    identities: int = Field(..., description="Identities in the served snapshot.")
    num_warnings: int = Field(..., description="Entries skipped by the load.")
    warnings: List[LoadWarningResponse] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """A single structured error detail."""

    field: Optional[str] = Field(None, description="Field name the error relates to (if any).")
    message: str = Field(..., description="Human-readable error description.")
    code: Optional[str] = Field(None, description="Machine-readable error code.")


class ErrorResponse(BaseModel):
    """
    Standardised error envelope returned for all 4xx / 5xx responses.

    All API errors use this shape so clients can handle them uniformly.
    """

    error: str = Field(..., description="Short error category (e.g. 'validation_error').")
    message: str = Field(..., description="Human-readable description of the error.")
    details: List[ErrorDetail] = Field(
        default_factory=list,
        description="Optional list of per-field or per-item error details.",
    )
    request_id: Optional[str] = Field(
        None, description="Unique request ID for tracing (from X-Request-ID header)."
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "service_unavailable",
                "message": "Face database is not available (state=stopped).",
                "details": [],
                "request_id": "req_abc123",
            }
        }
    }


__all__ = [
    # Health
    "ComponentStatus",
    "ComponentHealth",
    "HealthResponse",
    # Identification
    "IdentifyResponse",
    "FaceIdentification",
    "IdentifyAllResponse",
    # Database
    "IdentitySummary",
    "IdentitiesResponse",
    "LoadWarningResponse",
    "ReloadResponse",
    # Errors
    "ErrorDetail",
    "ErrorResponse",
]
