from typing import Dict, List, Optional, TYPE_CHECKING
import logging
import threading

from raftsim.core.constants import NodeRole
from raftsim.core.events import EventBus, EventType, NodeEvent

if TYPE_CHECKING:
    from raftsim.core.node import RaftNode
    from raftsim.network.transport import Transport


def quorum_size(member_count: int) -> int:
    """
    Number of votes needed for a majority of `member_count` members.
    """
    return member_count // 2 + 1


class ClusterRegistry:
    """
    The shared membership set of a simulated cluster.

    The registry only holds references to member nodes for lookup; it never
    owns their state or their lifetime. Every read and write of the
    membership is serialized by a single lock, independently of each node's
    own critical section. Node operations are always invoked after the lock
    is released.
    """

    def __init__(self, events: Optional[EventBus] = None, transport: Optional['Transport'] = None,
                 serialize_messages: bool = False):
        """
        Initialize a new registry.

        Args:
            events: Event bus for NODE_JOINED / NODE_LEFT events.
            transport: Transport handed to member nodes that have none. Defaults
                to a LocalTransport over this registry.
            serialize_messages: Whether the default transport round-trips
                messages through the wire codec.
        """
        from raftsim.network.transport import LocalTransport

        self._members: Dict[int, 'RaftNode'] = {}
        self._lock = threading.RLock()
        self.events = events if events is not None else EventBus()
        self.transport = transport if transport is not None else LocalTransport(self, serialize=serialize_messages)
        self.logger = logging.getLogger("raft.registry")

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._members)

    def __len__(self) -> int:
        return self.size

    def __contains__(self, node: 'RaftNode') -> bool:
        with self._lock:
            return self._members.get(node.node_id) is node

    def members(self) -> List['RaftNode']:
        with self._lock:
            return list(self._members.values())

    def get(self, node_id: int) -> Optional['RaftNode']:
        with self._lock:
            return self._members.get(node_id)

    def peers_of(self, node_id: int) -> List[int]:
        """
        IDs of every active member other than `node_id`, in join order.
        """
        with self._lock:
            return [member_id for member_id, node in self._members.items()
                    if member_id != node_id and node.active]

    def quorum_size(self) -> int:
        """
        Votes needed to elect a leader with the current membership.
        """
        return quorum_size(self.size)

    def get_current_leader(self) -> Optional['RaftNode']:
        """
        Return the first member whose role is LEADER, or None.

        A failed node keeps its role, so a failed leader that joined before
        the current one is returned here. Callers that need a live leader
        must check `active`.
        """
        with self._lock:
            for node in self._members.values():
                if node.role == NodeRole.LEADER:
                    return node
        return None

    def add_server(self, node: 'RaftNode') -> None:
        """
        Add a node to the cluster.

        If the node is an active follower and a leader exists, the node's log
        is overwritten with a full copy of the leader's log.

        Args:
            node: The node to add.

        Raises:
            ValueError: If another node with the same ID is already a member.
        """
        with self._lock:
            existing = self._members.get(node.node_id)
            if existing is not None and existing is not node:
                raise ValueError(f"Node ID {node.node_id} is already used by another member")
            self._members[node.node_id] = node
            leader = self.get_current_leader()

        node.attach(self)
        self.logger.info(f"Node {node.node_id} added to the cluster ({self.size} members)")
        self.events.emit(NodeEvent(EventType.NODE_JOINED, node.node_id, node.term, {'members': self.size}))

        if node.role == NodeRole.FOLLOWER and node.active and leader is not None and leader is not node:
            node.sync_log(leader.entries, source_id=leader.node_id)
            self.logger.info(f"Node {node.node_id} synchronized with leader {leader.node_id}")

    def remove_server(self, node: 'RaftNode') -> None:
        """
        Remove a node from the cluster, stopping it first if it is active.

        Removal does not trigger an election by itself.

        Args:
            node: The node to remove.
        """
        if node.active:
            node.stop_heartbeats()

        with self._lock:
            if self._members.get(node.node_id) is not node:
                self.logger.debug(f"Node {node.node_id} is not a member, nothing to remove")
                return
            del self._members[node.node_id]

        node.detach(self)
        self.logger.info(f"Node {node.node_id} removed from the cluster ({self.size} members)")
        self.events.emit(NodeEvent(EventType.NODE_LEFT, node.node_id, node.term, {'members': self.size}))
