"""
Request tracing middleware for the for-you API.

Each request gets a short request id (taken from X-Request-ID when the
client sends one). The id, method, path and the caller's customer id are
bound to the structlog context so every log line emitted while ranking a
page can be correlated. The id and the handling time are echoed back as
response headers.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging import bind_context, clear_context, get_logger


logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
RESPONSE_TIME_HEADER = "X-Response-Time"
CUSTOMER_ID_HEADER = "X-Customer-Id"


def _new_request_id() -> str:
    return uuid.uuid4().hex[:8]


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """
    Correlates logs per request and reports latency.

    Usage:
        app.add_middleware(RequestTracingMiddleware)
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or _new_request_id()
        bind_context(request_id=request_id, method=request.method, path=request.url.path)

        customer_id = (request.headers.get(CUSTOMER_ID_HEADER) or "").strip()
        if customer_id:
            bind_context(customer_id=customer_id)

        started = time.perf_counter()
        logger.debug("Request started", query_params=dict(request.query_params) or None)

        try:
            response = await call_next(request)
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info("Request completed", status_code=response.status_code, duration_ms=round(elapsed_ms, 2))
            response.headers[REQUEST_ID_HEADER] = request_id
            response.headers[RESPONSE_TIME_HEADER] = f"{elapsed_ms:.2f}ms"
            return response
        except Exception as e:
            logger.error(
                "Request failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise
        finally:
            # Context must not leak into the next request on this worker
            clear_context()
