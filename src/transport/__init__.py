"""Consensus Transport Adapters"""

from .http_transport import HttpTransport, HttpTransportConfig
from .memory import InMemoryNetwork, InMemoryTransport

__all__ = [
    "HttpTransport",
    "HttpTransportConfig",
    "InMemoryNetwork",
    "InMemoryTransport",
]
