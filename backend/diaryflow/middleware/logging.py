"""
DiaryFlow Backend — Request Logging Middleware
================================================

What:  One access log line per HTTP request, with status and duration.
Who:   Applied to every request, after RequestIDMiddleware.

Log Line:
    POST /api/drafts/9f2c.../save 201 842.3ms [a1b2c3d4] from 10.0.0.7

    Structured fields (request_id, method, path, status, duration_ms,
    client_ip, user_id) are attached as `extra` for log shippers.

Not logged: request bodies, uploaded media, diary text, auth headers.
The health probe and the long-lived SSE stream are skipped.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from diaryflow.middleware.request_id import request_id_var

logger = logging.getLogger("diaryflow.access")

QUIET_PATHS = {"/health", "/api/entries/stream"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log level follows the status code:
        5xx → ERROR, 4xx → WARNING, everything else → INFO
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        method = request.method

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        rid = request_id_var.get("")
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
                "user_id": request.headers.get("X-User-ID", ""),
            },
        )
        return response
