"""
LabelDesk Backend — Request ID Middleware
===========================================

What:  Gives every request a correlation ID.
Why:   One ID ties the access log line, the application logs and the
       error body of a request together.
How:   Reuses the caller's X-Request-ID header when present, otherwise makes
       a short random one. The ID is stored in a ContextVar (read by the
       exception handlers and the access log) and echoed back in the
       X-Request-ID response header.
Who:   Every request; added last so it runs first.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_REQUEST_ID_LENGTH = 64


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        incoming = request.headers.get("X-Request-ID", "").strip()
        rid = incoming[:MAX_REQUEST_ID_LENGTH] or uuid.uuid4().hex[:8]

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
