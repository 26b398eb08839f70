# src/middleware/correlation.py
"""
Correlation ID Middleware - traces consensus traffic across nodes
Every inbound request carries (or receives) a correlation ID that is stamped
on log records and forwarded on the node's own outbound messages.
"""

import uuid
import logging
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

HEADER_NAME = "X-Correlation-ID"

# Context variable for correlation ID (task-local under asyncio)
correlation_id_var: ContextVar[str] = ContextVar('correlation_id', default='no-corr-id')


def get_correlation_id() -> str:
    """Get current correlation ID from context"""
    return correlation_id_var.get()


def generate_correlation_id(prefix: str = "corr") -> str:
    """Generate a new correlation ID"""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class CorrelationIdFilter(logging.Filter):
    """Logging filter to inject correlation ID into log records"""

    def filter(self, record):
        record.correlation_id = get_correlation_id()
        return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Ensures every request handled by a node has a correlation ID.

    The ID is taken from the X-Correlation-ID header when a peer forwarded
    one, generated otherwise, and echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        corr_id = request.headers.get(HEADER_NAME) or generate_correlation_id()
        token = correlation_id_var.set(corr_id)

        try:
            response = await call_next(request)
            response.headers[HEADER_NAME] = corr_id
            return response
        finally:
            correlation_id_var.reset(token)
