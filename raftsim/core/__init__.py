"""
Core components of the Raft simulation.

This package contains the consensus node, the cluster registry, the timer
service, the log and its persistence collaborator, and the protocol messages.
"""

from raftsim.core.constants import NodeRole
from raftsim.core.events import EventBus, EventType, NodeEvent
from raftsim.core.exceptions import ConfigError, NodeShutdownError, RaftError
from raftsim.core.log import LogEntry, RaftLog
from raftsim.core.messages import Heartbeat, ReplicateEntries, RequestVote, VoteGranted
from raftsim.core.node import RaftNode
from raftsim.core.registry import ClusterRegistry, quorum_size
from raftsim.core.storage import FileLogStorage, LogStorage, MemoryLogStorage
from raftsim.core.timer import AsyncioScheduler, ManualScheduler, Scheduler, TimerHandle

__all__ = [
    'RaftNode',
    'NodeRole',
    'ClusterRegistry',
    'quorum_size',
    'RaftLog',
    'LogEntry',
    'LogStorage',
    'MemoryLogStorage',
    'FileLogStorage',
    'Scheduler',
    'AsyncioScheduler',
    'ManualScheduler',
    'TimerHandle',
    'EventBus',
    'EventType',
    'NodeEvent',
    'RequestVote',
    'VoteGranted',
    'Heartbeat',
    'ReplicateEntries',
    'RaftError',
    'NodeShutdownError',
    'ConfigError',
]
