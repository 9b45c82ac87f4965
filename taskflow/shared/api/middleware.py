"""
Shared API Middleware
======================

Common middleware and exception handlers for the FastAPI application.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from taskflow.core import ApplicationException
from taskflow.core.timeutils import utc_now
from taskflow.shared.api.responses import status_for
from taskflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    An incoming ``X-Correlation-ID`` is reused; otherwise one is generated.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with its status and latency."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = getattr(request.state, "correlation_id", "unknown")
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000),
                },
            )
            raise

        response_time = time.perf_counter() - start_time
        response.headers["X-Response-Time"] = f"{response_time:.3f}s"
        logger.info(
            "Request completed",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": int(response_time * 1000),
            },
        )
        return response


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """Render typed application errors that escaped a service as a result envelope."""
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    logger.warning(
        "Application error",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "error_code": exc.code,
            "error_message": exc.message,
        },
    )
    return JSONResponse(
        status_code=status_for(exc.code),
        content={
            "success": False,
            "error_code": exc.code,
            "error": exc.message,
            "details": exc.details or None,
            "correlation_id": correlation_id,
        },
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Internal details are only exposed in development.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.error(
        "Unhandled exception",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc),
        },
    )

    is_dev = getattr(getattr(request.app.state, "settings", None), "environment", None) == "development"

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "correlation_id": correlation_id,
            "timestamp": utc_now().isoformat(),
            "debug_info": str(exc) if is_dev else None,
        },
    )
