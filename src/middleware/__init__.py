"""Consensus Simulator Middleware Package"""

from .correlation import (
    CorrelationIdMiddleware,
    CorrelationIdFilter,
    HEADER_NAME,
    generate_correlation_id,
    get_correlation_id,
    correlation_id_var,
)

__all__ = [
    "CorrelationIdMiddleware",
    "CorrelationIdFilter",
    "HEADER_NAME",
    "generate_correlation_id",
    "get_correlation_id",
    "correlation_id_var",
]
