from __future__ import annotations

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from backoffice.core.logging import bind_request_context


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the structlog context and echo it back."""

    async def dispatch(self, request: Request, call_next):
        request_id = self._get_or_create_request_id(request)
        request.state.request_id = request_id

        bind_request_context(request_id, method=request.method, path=request.url.path)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    def _get_or_create_request_id(self, request: Request) -> str:
        request_id = request.headers.get("X-Request-ID") or request.headers.get("X-Correlation-ID")
        if request_id:
            return request_id[:128]

        # W3C trace context: 00-<trace id>-<span id>-<flags>
        traceparent = request.headers.get("traceparent")
        if traceparent and traceparent.startswith("00-") and len(traceparent) >= 35:
            return traceparent[3:35]

        return str(uuid.uuid4())
