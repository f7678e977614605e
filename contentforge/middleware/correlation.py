"""
Correlation ID middleware.

Every HTTP request gets an id (taken from a valid incoming ``X-Request-ID``
header or freshly generated) that is bound into the structlog context, kept
on ``request.state`` and echoed back in the response header. Background tasks
started by the request inherit the bound context.
"""

from __future__ import annotations

import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from structlog.contextvars import bind_contextvars, clear_contextvars

CORRELATION_HEADER = "X-Request-ID"


def _is_valid_correlation_id(value: str | None) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        clear_contextvars()

        incoming = request.headers.get(CORRELATION_HEADER)
        correlation_id = incoming if _is_valid_correlation_id(incoming) else str(uuid.uuid4())

        bind_contextvars(correlation_id=correlation_id)
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
