"""
Exceptions raised by the Raft simulation.

Expected protocol conditions (stale terms, no leader yet, messages to a
failed node) are never errors; these cover programmer mistakes only.
"""


class RaftError(Exception):
    """Base class for raftsim errors."""


class NodeShutdownError(RaftError, RuntimeError):
    """Raised when an operation is requested on a node that was shut down."""

    def __init__(self, node_id: int):
        super().__init__(f"Node {node_id} has been shut down")
        self.node_id = node_id


class ConfigError(RaftError, ValueError):
    """Raised when a simulation configuration is invalid."""
