"""
Message transport layer for the Raft simulation.

A transport delivers protocol messages between nodes. The in-process
LocalTransport resolves targets through a cluster registry.
"""

from raftsim.network.transport import Transport, LocalTransport

__all__ = [
    'Transport',
    'LocalTransport',
]
