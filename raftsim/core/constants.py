"""
Constants and enumerations for the Raft simulation.
"""

from enum import Enum, auto


class NodeRole(Enum):
    """
    Represents the possible roles of a Raft node.
    """
    FOLLOWER = auto()
    CANDIDATE = auto()
    LEADER = auto()


# All durations are in milliseconds.
ELECTION_TIMEOUT_MIN = 1500
ELECTION_TIMEOUT_MAX = 3000
HEARTBEAT_INTERVAL = 1500

DEFAULT_LEADER_OPERATIONS = ("Operation 1", "Operation 2")
