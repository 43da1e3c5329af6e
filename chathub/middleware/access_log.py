"""
Structured access log middleware.

Replaces Uvicorn's access log with one structlog event per request carrying
the correlation id, timing, status and caller. WebSocket traffic is not
HTTP and is logged by the WebSocket route itself.
"""

import time
import uuid
from typing import Callable

import jwt
import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from structlog.contextvars import bind_contextvars, clear_contextvars

from chathub.core.security import decode_token_string

logger = structlog.get_logger(__name__)

SLOW_REQUEST_MS = 1000
VERY_SLOW_REQUEST_MS = 5000


class AccessLogMiddleware(BaseHTTPMiddleware):
    """
    Access logging with correlation ids.

    The correlation id comes from X-Correlation-ID / X-Request-ID or is
    generated, is bound to the structlog context for every log line of the
    request and is echoed back in the response headers.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = (
            request.headers.get("X-Correlation-ID")
            or request.headers.get("X-Request-ID")
            or str(uuid.uuid4())
        )
        bind_contextvars(correlation_id=correlation_id)
        request.state.correlation_id = correlation_id

        start_time = time.perf_counter()
        method = request.method
        path = request.url.path
        client_host = request.client.host if request.client else None
        user_id = getattr(request.state, "user_id", None)

        logger.debug("request_started", method=method, path=path, client_ip=client_host, user_id=user_id)

        response = None
        error = None
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code

        except Exception as e:
            error = e
            logger.error(
                "request_error_unhandled",
                method=method,
                path=path,
                error_type=type(e).__name__,
                error=str(e),
                client_ip=client_host,
                user_id=user_id,
                exc_info=True,
            )
            raise

        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000

            if status_code >= 500:
                log_method = logger.error
            elif status_code >= 400:
                log_method = logger.warning
            else:
                log_method = logger.info

            log_method(
                "http_request",
                method=method,
                path=path,
                query_params=str(request.url.query) or None,
                status_code=status_code,
                duration_ms=round(duration_ms, 2),
                client_ip=client_host,
                user_agent=request.headers.get("user-agent"),
                user_id=user_id,
                error_type=type(error).__name__ if error else None,
                slow_request=duration_ms > SLOW_REQUEST_MS,
            )

            if duration_ms > VERY_SLOW_REQUEST_MS:
                logger.warning(
                    "performance_degradation",
                    method=method,
                    path=path,
                    duration_ms=round(duration_ms, 2),
                )

            clear_contextvars()

        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Request-ID"] = correlation_id
        return response


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Puts the caller's user id on request.state.

    Runs before AccessLogMiddleware and the rate limiter so both can key on
    the user. Rejecting bad tokens is left to the route dependencies.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        auth_header = request.headers.get("authorization")
        if auth_header and auth_header.startswith("Bearer "):
            try:
                user = decode_token_string(auth_header[len("Bearer "):])
                request.state.user_id = user.user_id
            except jwt.InvalidTokenError:
                request.state.user_id = None

        return await call_next(request)
