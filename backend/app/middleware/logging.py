"""
PixPress Backend — Request Logging Middleware
==============================================

What:  One structured log line per HTTP request.
How:   Logs method, path, status, duration, request ID and client IP after
       the response is produced; level follows the status class.
When:  After RequestIDMiddleware (uses request ID for correlation).

What we log vs what we DON'T log:
    ✅ Log: method, path, status, duration, IP, request ID, decode tier
    ❌ Don't log: uploaded bytes, form fields beyond the options line the
       compress route writes itself
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.middleware.request_id import request_id_var

logger = logging.getLogger("pixpress.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs structured information about each HTTP request and response.

    Typical durations:
        - GET /health: 1-5ms
        - POST /api/compress, buffer tier: 50-500ms depending on megapixels
        - POST /api/compress, converter tier: seconds (external process)
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start_time = time.perf_counter()

        client_ip = getattr(request.client, "host", "unknown") if request.client else "unknown"
        method = request.method
        path = request.url.path
        rid = request_id_var.get("")

        # Health checks run every few seconds; logging them drowns real traffic
        if path == "/health":
            return await call_next(request)

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        tier = response.headers.get("X-Decode-Tier", "-")

        logger.log(
            log_level,
            "%s %s %d %.1fms tier=%s [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            tier,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "decode_tier": tier,
                "client_ip": client_ip,
            },
        )

        return response
