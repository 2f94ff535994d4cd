from abc import ABC, abstractmethod
from typing import Set, TYPE_CHECKING
import logging
import threading

from raftsim.core.messages import Message, decode_message, encode_message

if TYPE_CHECKING:
    from raftsim.core.registry import ClusterRegistry


class Transport(ABC):
    """
    Abstract base class for message transports used by Raft nodes.

    A transport delivers protocol messages to other nodes. Delivery is
    fire-and-forget: responses, such as a granted vote, come back as
    independent messages.
    """

    @abstractmethod
    def send(self, target_id: int, message: Message) -> bool:
        """
        Send a message to a target node.

        Args:
            target_id: The ID of the target node.
            message: The message to deliver.

        Returns:
            True if the message was handed to the target, False if the target
            is unknown or unreachable.
        """
        pass


class LocalTransport(Transport):
    """
    In-process transport that resolves targets through a cluster registry.

    A target that is no longer a member is treated as absent and the message
    is dropped. With serialize=True every message goes through the wire codec
    first, so the in-process run exercises exactly what a networked
    deployment would put on the wire.
    """

    def __init__(self, registry: 'ClusterRegistry', serialize: bool = False):
        """
        Initialize a new local transport.

        Args:
            registry: The registry used to look up target nodes.
            serialize: Whether to round-trip messages through msgpack.
        """
        self.registry = registry
        self.serialize = serialize
        self._blocked: Set[int] = set()
        self._blocked_lock = threading.Lock()
        self.logger = logging.getLogger("raft.transport")

    def block(self, node_id: int) -> None:
        """
        Drop every message sent to or from a node, simulating a partition.
        """
        with self._blocked_lock:
            self._blocked.add(node_id)

    def unblock(self, node_id: int) -> None:
        with self._blocked_lock:
            self._blocked.discard(node_id)

    def send(self, target_id: int, message: Message) -> bool:
        source_id = getattr(message, 'candidate_id', None)
        if source_id is None:
            source_id = getattr(message, 'leader_id', None)
        if source_id is None:
            source_id = getattr(message, 'voter_id', None)

        with self._blocked_lock:
            partitioned = target_id in self._blocked or source_id in self._blocked
        if partitioned:
            self.logger.debug(f"Dropped {type(message).__name__} to {target_id}: partitioned")
            return False

        node = self.registry.get(target_id)
        if node is None:
            self.logger.debug(f"Dropped {type(message).__name__} to {target_id}: not a member")
            return False

        if self.serialize:
            message = decode_message(encode_message(message))

        node.handle_message(message)
        return True
