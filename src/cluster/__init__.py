"""
Network launchers - local multi-node simulation

- LocalCluster: in-process nodes over an in-memory network
- launch_network: one HTTP listener per node in a single event loop
"""

from .local import LocalCluster, build_node_configs
from .launcher import NetworkHandle, launch_network

__all__ = [
    "LocalCluster",
    "build_node_configs",
    "NetworkHandle",
    "launch_network",
]
