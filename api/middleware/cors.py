# CORS configuration + request-ID injection middleware.
#
# Provides:
#   - configure_cors(app)        — attach CORSMiddleware with settings
#   - RequestIDMiddleware        — stamps every request/response with a
#                                  unique X-Request-ID header for tracing
#   - configure_middleware(app)  — register both in the right order

from __future__ import annotations

import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from utils.logger import get_logger

logger = get_logger(__name__)


def configure_cors(app: FastAPI) -> None:
    """
    Attach CORSMiddleware to *app* using values from settings.

    Falls back to local development origins if the settings module
    cannot be imported.
    """
    try:
        from config.settings import settings  # noqa: PLC0415

        origins = settings.api.cors_origins
    except Exception:
        origins = ["http://localhost:8000", "http://127.0.0.1:8000"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-Request-ID",
            "Accept",
            "Origin",
        ],
        expose_headers=["X-Request-ID", "X-Processing-Ms"],
        max_age=600,
    )
    logger.info(f"CORS configured | allowed origins: {origins}")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Stamps every HTTP request and response with a unique ID and records
    processing time.

    - Uses the client's ``X-Request-ID`` header if present, otherwise a
      new ``uuid4`` string.
    - Stores it in ``request.state.request_id`` for route-level logging.
    - Echoes it in the ``X-Request-ID`` response header, alongside
      ``X-Processing-Ms``.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        t_start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - t_start) * 1000.0

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Ms"] = f"{elapsed_ms:.1f}"
        return response


def configure_middleware(app: FastAPI) -> None:
    """Attach all middleware to *app*.

    Starlette applies middleware in reverse registration order, so the
    request-ID middleware (registered last) is the outermost.
    """
    configure_cors(app)
    app.add_middleware(RequestIDMiddleware)
    logger.info("Middleware configured | RequestID=on | CORS=on")
