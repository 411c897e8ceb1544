"""HTTP middleware: request IDs, engine error translation and slow-request logging."""

import time
import uuid
from datetime import datetime
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import (
    AccessDeniedError, AlreadyRunningError, NotFoundError,
    StorageError, WorkflowEngineError, WorkflowValidationError, create_error_response
)
from .logging import get_logger, logging_context


logger = get_logger(__name__)

# Checked in order; the first matching class wins
ERROR_STATUS_CODES = (
    (WorkflowValidationError, 400),
    (AccessDeniedError, 403),
    (NotFoundError, 404),
    (AlreadyRunningError, 409),
    (StorageError, 503),
)


def status_code_for_error(error: WorkflowEngineError) -> int:
    """Map an engine error onto an HTTP status code."""
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return status_code
    return 500


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Tags every request with an ID and renders escaped errors as JSON."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = uuid.uuid4().hex
        route = f"{request.method} {request.url.path}"
        started = time.perf_counter()

        with logging_context(request_id=request_id, route=route):
            try:
                response = await call_next(request)
                logger.info(f"{route} -> {response.status_code} in {time.perf_counter() - started:.3f}s")
            except WorkflowEngineError as e:
                logger.warning(f"{route} raised {e.error_code}: {e.message}")
                response = JSONResponse(status_code=status_code_for_error(e), content=create_error_response(e))
            except Exception as e:
                logger.error(f"{route} failed with {type(e).__name__}: {e}", exc_info=True)
                response = JSONResponse(
                    status_code=500,
                    content={
                        "error": "InternalServerError",
                        "message": "An unexpected error occurred",
                        "details": {"error_type": type(e).__name__, "timestamp": datetime.utcnow().isoformat()},
                        "request_id": request_id
                    }
                )

        response.headers["X-Request-ID"] = request_id
        return response


class PerformanceMonitoringMiddleware(BaseHTTPMiddleware):
    """Adds X-Response-Time and warns about requests slower than the threshold."""

    def __init__(self, app, slow_request_threshold: float = 5.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        if elapsed > self.slow_request_threshold:
            logger.warning(
                f"Slow request {request.method} {request.url.path}: "
                f"{elapsed:.3f}s over {self.slow_request_threshold}s"
            )

        response.headers["X-Response-Time"] = f"{elapsed:.3f}s"
        return response
