# ============================================================
# Face Identity Engine
# api/main.py
# ============================================================
# FastAPI application entry point.
#
# Responsibilities:
#   - Create and configure the FastAPI app instance
#   - Lifespan handler: build the recognition engine, load the
#     identity database, start hot reload; shut it all down on exit
#   - Register all routers under /api/v1
#   - CORS + request ID middleware
#   - Global exception handlers (validation, HTTP, engine, generic)
#
# Run with:
#   uvicorn api.main:app --host 0.0.0.0 --port 8000
#   python -m api.main          (host/port from API_HOST / API_PORT)
# ============================================================

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.routers import health, recognition
from api.schemas.responses import ErrorDetail, ErrorResponse
from core.exceptions import (
    DatabaseLoadError,
    DatabaseNotAvailableError,
    FaceRecognitionError,
    InvalidImageError,
)
from core.pipeline.recognition_engine import FaceRecognitionEngine
from utils.logger import get_logger, setup_from_settings

# Configure logger from settings before any other logging
setup_from_settings()

logger = get_logger(__name__)


# ============================================================
# Lifespan — engine startup / teardown
# ============================================================

def _build_lifespan(engine: Optional[FaceRecognitionEngine] = None):
    """
    Return a lifespan context manager.

    With *engine* given (tests, embedding applications) that engine is
    served as-is. Otherwise one is built from settings, its database is
    loaded, and hot reload is started if enabled.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("=" * 60)
        logger.info("Face Identity Engine API — starting up")
        logger.info("=" * 60)

        if engine is not None:
            app.state.engine = engine
            logger.info(f"Using provided engine: {engine!r}")
        else:
            app.state.engine = _engine_from_settings()

        logger.info("Startup complete.")
        logger.info("=" * 60)

        yield

        logger.info("Shutting down — stopping recognition engine...")
        served = getattr(app.state, "engine", None)
        if served is not None:
            served.shutdown()
        logger.info("Shutdown complete.")

    return lifespan


def _engine_from_settings() -> Optional[FaceRecognitionEngine]:
    from config.settings import settings  # noqa: PLC0415

    logger.info(
        f"Settings loaded | env={settings.environment} v={settings.app_version}"
    )

    try:
        engine = FaceRecognitionEngine.from_settings(settings)
    except Exception as exc:
        logger.error(f"Failed to build recognition engine: {exc}")
        return None

    db_cfg = settings.database
    try:
        store = engine.initialize(db_cfg.root)
        logger.success(
            f"Identity database loaded: {db_cfg.root} "
            f"({store.count} identities, v{store.version})"
        )
    except (FaceRecognitionError, FileNotFoundError, RuntimeError) as exc:
        # Served as "down" by /health; queries answer 503
        logger.error(f"Failed to initialise recognition engine: {exc}")
        return engine

    if db_cfg.hot_reload:
        engine.enable_hot_reload(db_cfg.debounce_seconds)
    else:
        logger.info("Hot reload disabled (DATABASE_HOT_RELOAD=false).")
    return engine


# ============================================================
# App factory
# ============================================================

def create_app(engine: Optional[FaceRecognitionEngine] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Separated into a factory function so tests can create isolated
    app instances around a prepared engine.

    Args:
        engine: Engine to serve. None = build one from settings on startup.

    Returns:
        Configured ``FastAPI`` instance.
    """
    try:
        from config.settings import settings  # noqa: PLC0415
        _version     = settings.app_version
        _title       = settings.app_name
        _debug       = settings.api.debug
        _api_prefix  = settings.api.api_prefix
    except Exception:
        _version     = "1.0.0"
        _title       = "Face Identity Engine"
        _debug       = False
        _api_prefix  = "/api/v1"

    app = FastAPI(
        title=_title,
        version=_version,
        description=(
            "# Face Identity Engine API\n\n"
            "Identifies faces against a directory of reference photos "
            "(one subdirectory per person). The directory is watched and "
            "reloaded automatically; queries are never blocked by a reload."
        ),
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=_build_lifespan(engine),
        debug=_debug,
    )

    from api.middleware.cors import configure_middleware  # noqa: PLC0415
    configure_middleware(app)

    app.include_router(health.router,      prefix=_api_prefix)
    app.include_router(recognition.router, prefix=_api_prefix)

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        return JSONResponse(
            content={
                "message": _title,
                "docs":    "/docs",
                "health":  f"{_api_prefix}/health",
            }
        )

    _register_exception_handlers(app)

    logger.info(f"FastAPI app created | version={_version} prefix={_api_prefix}")
    return app


# ============================================================
# Exception handlers
# ============================================================

def _error_response(request: Request, status_code: int, message: str, error: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error or _status_to_error_code(status_code),
            message=message,
            details=[],
            request_id=getattr(request.state, "request_id", None),
        ).model_dump(),
    )


def _register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers on *app*."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        """Return a structured 422 for Pydantic / FastAPI validation errors."""
        details = []
        for error in exc.errors():
            loc   = " → ".join(str(part) for part in error.get("loc", []))
            msg   = error.get("msg", "Validation error")
            code  = error.get("type", "validation_error")
            details.append(ErrorDetail(field=loc or None, message=msg, code=code))

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorResponse(
                error="validation_error",
                message="One or more request fields failed validation.",
                details=details,
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request,
        exc: StarletteHTTPException,
    ) -> JSONResponse:
        """Return a structured JSON body for all HTTP exceptions."""
        return _error_response(request, exc.status_code, str(exc.detail))

    @app.exception_handler(FaceRecognitionError)
    async def engine_exception_handler(
        request: Request,
        exc: FaceRecognitionError,
    ) -> JSONResponse:
        """Map engine errors to HTTP status codes."""
        if isinstance(exc, DatabaseNotAvailableError):
            code = status.HTTP_503_SERVICE_UNAVAILABLE
        elif isinstance(exc, InvalidImageError):
            code = status.HTTP_400_BAD_REQUEST
        elif isinstance(exc, DatabaseLoadError):
            code = status.HTTP_500_INTERNAL_SERVER_ERROR
            logger.error(f"Database load failed on {request.url}: {exc}")
        else:
            code = status.HTTP_500_INTERNAL_SERVER_ERROR
            logger.error(f"Engine error on {request.url}: {exc}")
        return _error_response(request, code, str(exc))

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Catch-all handler — prevents stack traces leaking to clients."""
        logger.exception(f"Unhandled exception on {request.url}: {exc}")
        return _error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred. Please try again later.",
        )


def _status_to_error_code(status_code: int) -> str:
    """Map an HTTP status code to a short machine-readable error string."""
    mapping = {
        400: "bad_request",
        404: "not_found",
        405: "method_not_allowed",
        413: "payload_too_large",
        422: "unprocessable_entity",
        500: "internal_server_error",
        503: "service_unavailable",
        504: "gateway_timeout",
    }
    return mapping.get(status_code, f"http_{status_code}")


# ============================================================
# App instance (module-level for Uvicorn)
# ============================================================

app = create_app()


if __name__ == "__main__":
    import uvicorn

    from config.settings import settings

    uvicorn.run(app, host=settings.api.host, port=settings.api.port)
