"""
Request logging middleware with correlation ID support.

Each request gets a short random correlation ID bound to the structlog
context, so every protocol event logged while handling it can be joined up.

Privacy: never logs IPs, identities, token payloads or signatures.
"""

import secrets
import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate an 8-character correlation ID."""
    return secrets.token_hex(4)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs request_started / request_completed / request_failed with timing."""

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = generate_correlation_id()
        start_time = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        logger = structlog.get_logger()
        logger.info("request_started", method=request.method, path=request.url.path)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                exc_info=True,
            )
            raise

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
