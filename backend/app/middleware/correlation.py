"""
Correlation ID middleware for request tracing.
"""
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.constants import EVENTSUB_MESSAGE_ID_HEADER

# Context variable to store correlation ID for the current request or loop cycle
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Get the correlation ID for the current context."""
    return correlation_id_var.get()


def new_correlation_id() -> str:
    return str(uuid.uuid4())[:8]  # Short 8-char ID for readability


@contextmanager
def bind_correlation_id(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of a block (background loop cycles)."""
    value = correlation_id or new_correlation_id()
    token = correlation_id_var.set(value)
    try:
        yield value
    finally:
        correlation_id_var.reset(token)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds a correlation ID to each request.

    The correlation ID is:
    1. Read from X-Correlation-ID header if present (for distributed tracing)
    2. Otherwise derived from the EventSub message id, so every log line of a
       webhook delivery (and of its redeliveries) shares one id
    3. Generated as a new short UUID otherwise
    """

    HEADER_NAME = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(self.HEADER_NAME)
        if not correlation_id:
            message_id = request.headers.get(EVENTSUB_MESSAGE_ID_HEADER)
            correlation_id = f"es-{message_id[:8]}" if message_id else new_correlation_id()

        with bind_correlation_id(correlation_id):
            response = await call_next(request)
            response.headers[self.HEADER_NAME] = correlation_id
            return response


def correlation_id_filter(record):
    """
    Loguru filter that adds correlation_id to log records.
    """
    record["extra"]["correlation_id"] = get_correlation_id() or "-"
    return True
