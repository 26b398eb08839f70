"""Consensus Node HTTP Service"""

from .app import create_node_app, MessagePayload, NodeStateResponse

__all__ = ["create_node_app", "MessagePayload", "NodeStateResponse"]
