"""
Request context and access logging.

One structured ``http_request`` event per request, replacing Uvicorn's access
log. The correlation id is bound into structlog contextvars, so every log line
emitted while handling the request carries it, and echoed back to the client.
"""

import time
import uuid
from typing import Callable, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

USER_ID_HEADER = "X-User-ID"
CORRELATION_HEADERS = ("X-Correlation-ID", "X-Request-ID")

SLOW_REQUEST_MS = 1000
VERY_SLOW_REQUEST_MS = 5000

logger = structlog.get_logger(__name__)


def _correlation_id(request: Request) -> str:
    for header in CORRELATION_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return str(uuid.uuid4())


def _level_for(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code >= 400:
        return "warning"
    return "info"


class AccessLogMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = _correlation_id(request)
        bind_contextvars(correlation_id=correlation_id, request_id=correlation_id)
        request.state.correlation_id = correlation_id

        client_ip = request.client.host if request.client else None
        user_id: Optional[str] = getattr(request.state, "user_id", None)
        start_time = time.perf_counter()

        status_code = 500
        error_type = None
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            error_type = type(e).__name__
            logger.error(
                "request_error_unhandled",
                method=request.method,
                path=request.url.path,
                error_type=error_type,
                error=str(e),
                user_id=user_id,
                exc_info=True,
            )
            raise
        finally:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            getattr(logger, _level_for(status_code))(
                "http_request",
                method=request.method,
                path=request.url.path,
                query_params=request.url.query or None,
                status_code=status_code,
                duration_ms=duration_ms,
                client_ip=client_ip,
                user_id=user_id,
                error_type=error_type,
                slow_request=duration_ms > SLOW_REQUEST_MS,
            )
            if duration_ms > VERY_SLOW_REQUEST_MS:
                logger.warning(
                    "performance_degradation",
                    method=request.method,
                    path=request.url.path,
                    duration_ms=duration_ms,
                )
            clear_contextvars()

        for header in CORRELATION_HEADERS:
            response.headers[header] = correlation_id
        return response


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Put the asserted caller id (``X-User-ID``) on ``request.state``.

    Identity comes from the upstream identity provider and is trusted as-is;
    access logs and rate limiting key on it.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        user_id = request.headers.get(USER_ID_HEADER)
        if user_id:
            request.state.user_id = user_id
        return await call_next(request)
