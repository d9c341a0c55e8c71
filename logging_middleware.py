# logging_middleware.py
import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs one line per request with status and timing.

    Every response carries an ``X-Correlation-ID`` header, copied from the
    request when the client sent one.
    """

    EXCLUDE_PATHS = ("/api/health",)

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())[:8]
        request.state.correlation_id = correlation_id

        if request.url.path.startswith(self.EXCLUDE_PATHS):
            response = await call_next(request)
            response.headers["X-Correlation-ID"] = correlation_id
            return response

        start_time = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        log = logger.warning if response.status_code >= 400 else logger.info
        log(f"[{correlation_id}] {request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)")

        response.headers["X-Correlation-ID"] = correlation_id
        return response
