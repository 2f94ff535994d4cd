from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging


class EventType(Enum):
    """
    Observable transitions of nodes and of the cluster membership.
    """
    NODE_STARTED = "node_started"
    ELECTION_STARTED = "election_started"
    VOTE_REQUESTED = "vote_requested"
    VOTE_GRANTED = "vote_granted"
    VOTE_RECEIVED = "vote_received"
    BECAME_LEADER = "became_leader"
    STEPPED_DOWN = "stepped_down"
    TERM_UPDATED = "term_updated"
    HEARTBEAT_SENT = "heartbeat_sent"
    HEARTBEAT_RECEIVED = "heartbeat_received"
    ENTRIES_REPLICATED = "entries_replicated"
    LOG_SYNCED = "log_synced"
    ENTRY_PROPOSED = "entry_proposed"
    PROPOSAL_REJECTED = "proposal_rejected"
    PERSIST_FAILED = "persist_failed"
    NODE_JOINED = "node_joined"
    NODE_LEFT = "node_left"
    NODE_FAILED = "node_failed"
    NODE_SHUTDOWN = "node_shutdown"


@dataclass(frozen=True)
class NodeEvent:
    """
    A single observable event.

    Attributes:
        type: What happened.
        node_id: The node the event is about.
        term: The node's term when the event was emitted.
        details: Event-specific data (peer ids, counts, ...).
    """
    type: EventType
    node_id: int
    term: int
    details: Dict[str, Any] = field(default_factory=dict)


EventListener = Callable[[NodeEvent], None]


class EventBus:
    """
    Fan-out of node events to subscribed listeners.

    A listener that raises is logged and skipped; it never affects the
    emitting node or the other listeners.
    """

    def __init__(self, listeners: Optional[List[EventListener]] = None):
        self._listeners: List[EventListener] = list(listeners or [])
        self.logger = logging.getLogger("raft.events")

    def subscribe(self, listener: EventListener) -> EventListener:
        self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: NodeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                self.logger.exception(f"Event listener {listener!r} failed on {event.type.value}")
