# ============================================================
# Face Identity Engine
# api/routers/recognition.py
# ============================================================
# Identification and database routes:
#
#   POST /identify          — best face in the upload → name, score
#   POST /identify/all      — every face in the upload
#   GET  /identities        — identities in the served snapshot
#   POST /database/reload   — rebuild the snapshot now
#
# Engine calls are blocking (OpenCV inference, directory scans)
# and run in the default thread pool executor.
# ============================================================

from __future__ import annotations

import asyncio
import uuid
from functools import partial
from typing import Optional

import cv2
import numpy as np
from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile, status

from api.schemas.responses import (
    ErrorResponse,
    FaceIdentification,
    IdentifyAllResponse,
    IdentifyResponse,
    IdentitiesResponse,
    IdentitySummary,
    LoadWarningResponse,
    ReloadResponse,
)
from core.pipeline.recognition_engine import FaceRecognitionEngine
from utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Recognition"])

# Maximum seconds for a single engine call before timeout
_INFERENCE_TIMEOUT: float = 60.0
_RELOAD_TIMEOUT: float = 600.0


def _get_upload_limits() -> tuple[int, int, int]:
    """Return (max_bytes, max_dim, min_dim) from settings or defaults."""
    try:
        from config.settings import settings  # noqa: PLC0415
        return (
            settings.api.max_upload_bytes,
            settings.api.max_image_dimension,
            settings.api.min_image_dimension,
        )
    except Exception:
        return 10 * 1024 * 1024, 4096, 10


async def _decode_upload(upload: UploadFile) -> np.ndarray:
    """Decode an uploaded image file into a BGR numpy array."""
    max_bytes, max_dim, min_dim = _get_upload_limits()

    # Pre-check Content-Length before reading full body into memory
    claimed_size = upload.size
    if claimed_size is not None and claimed_size > max_bytes:
        mb = max_bytes / (1024 * 1024)
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large ({claimed_size} bytes). Maximum: {mb:.0f} MB.",
        )

    raw = await upload.read()
    if len(raw) > max_bytes:
        mb = max_bytes / (1024 * 1024)
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large ({len(raw)} bytes). Maximum: {mb:.0f} MB.",
        )

    img = None
    if raw:
        img = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_COLOR)
    if img is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot decode uploaded image '{upload.filename}'.",
        )

    h, w = img.shape[:2]
    if h > max_dim or w > max_dim:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Image too large: {w}x{h}. Maximum dimension: {max_dim}px.",
        )
    if h < min_dim or w < min_dim:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Image too small: {w}x{h}. Minimum dimension: {min_dim}px.",
        )

    return img


def _get_engine(request: Request) -> FaceRecognitionEngine:
    """Return the app's engine or raise HTTP 503."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Face recognition engine is not initialised.",
        )
    return engine


async def _run_blocking(func, *args, timeout: float = _INFERENCE_TIMEOUT):
    loop = asyncio.get_running_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(None, partial(func, *args)),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=f"Operation timed out after {timeout:.0f}s.",
        )


_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid image or request."},
    413: {"model": ErrorResponse, "description": "Upload too large."},
    503: {"model": ErrorResponse, "description": "Identity database not available."},
}


# ============================================================
# Identification
# ============================================================

@router.post(
    "/identify",
    response_model=IdentifyResponse,
    summary="Identify the main face in an image",
    description=(
        "Detects faces in the uploaded image, embeds the most confident "
        "one, and matches it against the identity database. Returns "
        "'unknown' when no face is found or no identity scores above "
        "the threshold."
    ),
    responses=_ERROR_RESPONSES,
)
async def identify(
    request:   Request,
    image:     UploadFile       = File(..., description="Image file (JPEG / PNG / WebP / BMP)."),
    threshold: Optional[float]  = Form(None, ge=-1.0, le=1.0, description="Override the match threshold."),
) -> IdentifyResponse:
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
    engine = _get_engine(request)

    img = await _decode_upload(image)
    snapshot = engine.current_snapshot()
    thresh = engine.similarity_threshold if threshold is None else threshold

    result = await _run_blocking(engine.identify, img, thresh, snapshot)
    logger.info(
        f"[{request_id[:8]}] POST /identify → {result} | v{snapshot.version}"
    )

    return IdentifyResponse(
        name=result.name,
        score=result.score,
        is_known=result.is_known,
        threshold_used=thresh,
        database_version=snapshot.version,
    )


@router.post(
    "/identify/all",
    response_model=IdentifyAllResponse,
    summary="Identify every face in an image",
    responses=_ERROR_RESPONSES,
)
async def identify_all(
    request:   Request,
    image:     UploadFile       = File(..., description="Image file (JPEG / PNG / WebP / BMP)."),
    threshold: Optional[float]  = Form(None, ge=-1.0, le=1.0, description="Override the match threshold."),
) -> IdentifyAllResponse:
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
    engine = _get_engine(request)

    img = await _decode_upload(image)
    snapshot = engine.current_snapshot()
    thresh = engine.similarity_threshold if threshold is None else threshold

    results = await _run_blocking(engine.identify_all, img, thresh, snapshot)
    faces = [
        FaceIdentification(
            face_index=i,
            name=r.name,
            score=r.score,
            is_known=r.is_known,
        )
        for i, r in enumerate(results)
    ]
    logger.info(
        f"[{request_id[:8]}] POST /identify/all → {len(faces)} face(s) | v{snapshot.version}"
    )

    return IdentifyAllResponse(
        num_faces=len(faces),
        num_known=sum(1 for f in faces if f.is_known),
        faces=faces,
        threshold_used=thresh,
        database_version=snapshot.version,
    )


# ============================================================
# Database
# ============================================================

@router.get(
    "/identities",
    response_model=IdentitiesResponse,
    summary="List identities in the served snapshot",
    responses={503: _ERROR_RESPONSES[503]},
)
async def list_identities(request: Request) -> IdentitiesResponse:
    engine = _get_engine(request)
    snapshot = engine.current_snapshot()

    return IdentitiesResponse(
        count=snapshot.count,
        total_descriptors=snapshot.total_descriptors,
        database_version=snapshot.version,
        identities=[
            IdentitySummary(name=identity.name, num_descriptors=identity.num_descriptors)
            for identity in snapshot
        ],
    )


@router.post(
    "/database/reload",
    response_model=ReloadResponse,
    summary="Reload the identity database now",
    description=(
        "Rescans the database directory synchronously and installs the "
        "new snapshot. In-flight queries keep the snapshot they started with."
    ),
    responses={
        500: {"model": ErrorResponse, "description": "Database directory unusable."},
        503: _ERROR_RESPONSES[503],
    },
)
async def reload_database(request: Request) -> ReloadResponse:
    engine = _get_engine(request)

    store, warnings = await _run_blocking(engine.reload_with_warnings, timeout=_RELOAD_TIMEOUT)
    # A superseded reload reports whatever snapshot won.
    served = store if store is not None else engine.current_snapshot()

    logger.info(
        f"POST /database/reload → installed={store is not None} "
        f"version={served.version} warnings={len(warnings)}"
    )

    return ReloadResponse(
        installed=store is not None,
        database_version=served.version,
        identities=served.count,
        num_warnings=len(warnings),
        warnings=[
            LoadWarningResponse(
                kind=w.kind.value,
                path=w.path,
                identity=w.identity,
                message=w.message,
            )
            for w in warnings
        ],
    )
