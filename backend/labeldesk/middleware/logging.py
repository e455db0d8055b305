"""
LabelDesk Backend — Access Log Middleware
===========================================

What:  One log line per request: method, path, status, duration, caller.
Why:   Latency and error rates per endpoint, correlated by request ID,
       without touching handler code.
How:   Times the downstream call with perf_counter and logs on the
       `labeldesk.access` logger. The level follows the status class
       (5xx ERROR, 4xx WARNING, otherwise INFO) so alerting can key off it.
Who:   Every request except /health.

Request bodies are never logged: they carry label content and thumbnail
payloads.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from labeldesk.middleware.request_id import request_id_var

logger = logging.getLogger("labeldesk.access")

QUIET_PATHS = {"/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        rid = request_id_var.get("")
        user_id = request.headers.get("X-User-ID", "-")
        client_ip = request.client.host if request.client else "unknown"

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] user=%s from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            user_id,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "user_id": user_id,
            },
        )
        return response
