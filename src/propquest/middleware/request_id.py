"""Request ID middleware: generates or propagates X-Request-Id."""

import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Ensure every request has a unique X-Request-Id header.

    The request id, and the client session id when the daily prompt sends
    one, are bound into the structlog context for every log line of the
    request.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)
        session_id = request.headers.get("X-Session-Id")
        if session_id:
            structlog.contextvars.bind_contextvars(session_id=session_id)
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
