from collections import deque
from functools import partial
from typing import Any, Callable, Deque, List, Optional, Sequence, Set, Tuple, TYPE_CHECKING
import logging
import random
import threading

from raftsim.core.constants import (
    DEFAULT_LEADER_OPERATIONS,
    ELECTION_TIMEOUT_MAX,
    ELECTION_TIMEOUT_MIN,
    HEARTBEAT_INTERVAL,
    NodeRole,
)
from raftsim.core.events import EventBus, EventType, NodeEvent
from raftsim.core.exceptions import NodeShutdownError
from raftsim.core.log import LogEntry, RaftLog
from raftsim.core.messages import Heartbeat, Message, ReplicateEntries, RequestVote, VoteGranted
from raftsim.core.storage import LogStorage, MemoryLogStorage
from raftsim.core.timer import AsyncioScheduler, Scheduler, TimerHandle
from raftsim.utils.logging_config import NodeLoggerAdapter

if TYPE_CHECKING:
    from raftsim.core.registry import ClusterRegistry
    from raftsim.network.transport import Transport


class RaftNode:
    """
    Represents a node in a simulated Raft cluster.

    The node owns its term, role, vote bookkeeping and log. It behaves as an
    actor: every public operation and every incoming message is queued in a
    private mailbox and processed one at a time, so a message is always
    evaluated against fully-applied state and never interleaves with another
    operation on the same node. Peers are only ever reached through protocol
    messages handed to a Transport.
    """

    def __init__(
        self,
        node_id: int,
        registry: Optional['ClusterRegistry'] = None,
        storage: Optional[LogStorage] = None,
        scheduler: Optional[Scheduler] = None,
        transport: Optional['Transport'] = None,
        rng: Optional[random.Random] = None,
        events: Optional[EventBus] = None,
        election_timeout_min: float = ELECTION_TIMEOUT_MIN,
        election_timeout_max: float = ELECTION_TIMEOUT_MAX,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        leader_operations: Sequence[str] = DEFAULT_LEADER_OPERATIONS,
    ):
        """
        Initialize a new Raft node.

        Args:
            node_id: Unique, non-negative identifier for this node.
            registry: Registry to bind the node to. Binding does not make the
                node a member; ClusterRegistry.add_server() does that.
            storage: Persistence collaborator. Defaults to in-memory storage.
            scheduler: Timer service. Defaults to an AsyncioScheduler owned
                (and closed on shutdown) by this node.
            transport: Transport used to reach peers. If None, the transport
                of the registry the node joins is used.
            rng: Random source for election timeouts; seed it for
                reproducible elections.
            events: Event bus that receives this node's transitions.
            election_timeout_min: Minimum election timeout in milliseconds.
            election_timeout_max: Maximum election timeout in milliseconds.
            heartbeat_interval: Heartbeat interval in milliseconds.
            leader_operations: Operations appended to the log each time this
                node becomes leader.

        Raises:
            ValueError: If the node ID or a timing parameter is invalid.
        """
        if isinstance(node_id, bool) or not isinstance(node_id, int) or node_id < 0:
            raise ValueError(f"Node ID must be a non-negative integer, got {node_id!r}")
        if election_timeout_min <= 0 or election_timeout_max < election_timeout_min:
            raise ValueError(
                f"Invalid election timeout range [{election_timeout_min}, {election_timeout_max}]"
            )
        if heartbeat_interval <= 0:
            raise ValueError(f"Heartbeat interval must be positive, got {heartbeat_interval}")

        self._node_id = node_id
        self.storage = storage if storage is not None else MemoryLogStorage()
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self._transport = transport
        self.registry: Optional['ClusterRegistry'] = None
        if registry is not None:
            self.attach(registry)
        self.rng = rng if rng is not None else random.Random()
        self.events = events if events is not None else EventBus()

        self.election_timeout_min = election_timeout_min
        self.election_timeout_max = election_timeout_max
        self.heartbeat_interval = heartbeat_interval
        self.leader_operations = tuple(leader_operations)

        self._term = 0
        self._role = NodeRole.FOLLOWER
        self._votes: Set[int] = set()
        self._voted_for: Optional[int] = None
        self._leader_id: Optional[int] = None
        self._active = True
        self._started = False
        self._closed = False

        self._election_timer: Optional[TimerHandle] = None
        self._heartbeat_timer: Optional[TimerHandle] = None
        self._election_generation = 0

        self._mailbox: Deque[Callable[[], None]] = deque()
        self._mailbox_lock = threading.Lock()
        self._draining = False

        self.logger = NodeLoggerAdapter(logging.getLogger(f"raft.node.{node_id}"), self)

        self.log = RaftLog(self.storage.load_all())
        # Length of the log prefix known to be in storage.
        self._persisted = len(self.log)
        # Set when storage holds entries past the watermark that the log no
        # longer has; the next persist then rewrites storage.
        self._storage_diverged = False
        if len(self.log):
            self.logger.info(f"Restored {len(self.log)} entries from storage")

    def __repr__(self) -> str:
        return f"RaftNode(id={self._node_id}, role={self._role.name}, term={self._term}, active={self._active})"

    @property
    def node_id(self) -> int:
        return self._node_id

    @property
    def term(self) -> int:
        return self._term

    @property
    def role(self) -> NodeRole:
        return self._role

    @property
    def is_leader(self) -> bool:
        return self._role == NodeRole.LEADER

    @property
    def vote_count(self) -> int:
        """Votes collected in the current election, including the self-vote."""
        return len(self._votes)

    @property
    def voted_for(self) -> Optional[int]:
        return self._voted_for

    @property
    def leader_id(self) -> Optional[int]:
        return self._leader_id

    @property
    def active(self) -> bool:
        return self._active

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def entries(self) -> Tuple[LogEntry, ...]:
        return self.log.snapshot()

    @property
    def transport(self) -> Optional['Transport']:
        if self._transport is not None:
            return self._transport
        if self.registry is not None:
            return self.registry.transport
        return None

    def attach(self, registry: 'ClusterRegistry') -> None:
        """
        Bind the node to the registry that holds its membership.
        """
        self.registry = registry

    def detach(self, registry: 'ClusterRegistry') -> None:
        if self.registry is registry:
            self.registry = None

    # Public operations. Each one is queued and runs in the node's own
    # critical section.

    def start(self) -> None:
        """
        Arm the election timer with a random timeout.

        Raises:
            NodeShutdownError: If the node was shut down.
        """
        self._ensure_open()
        self._submit(self._start)

    def trigger_election(self) -> None:
        """
        Start an election now, as if the election timer had expired.

        Raises:
            NodeShutdownError: If the node was shut down.
        """
        self._ensure_open()
        self._submit(self._trigger_election, None)

    def handle_message(self, message: Message) -> None:
        """
        Deliver a protocol message to this node.

        Messages to a failed or shut down node are ignored.

        Args:
            message: The message to process.
        """
        self._submit(self._dispatch, message)

    def on_request_vote(self, candidate_id: int, candidate_term: int) -> None:
        self.handle_message(RequestVote(candidate_id=candidate_id, term=candidate_term))

    def on_vote_granted(self, voter_id: int, term: int) -> None:
        self.handle_message(VoteGranted(voter_id=voter_id, term=term))

    def on_heartbeat(self, leader_id: int, leader_term: int) -> None:
        self.handle_message(Heartbeat(leader_id=leader_id, term=leader_term))

    def send_heartbeats(self) -> None:
        """
        Broadcast a heartbeat now. No-op unless this node is an active leader.
        """
        self._submit(self._send_heartbeats)

    def replicate_log_entries(self) -> None:
        """
        Send the full log to every active peer. No-op unless this node is an
        active leader.
        """
        self._submit(self._replicate_log_entries)

    def propose(self, operation: str) -> None:
        """
        Submit a client operation.

        On the leader the operation is appended to the log, persisted and
        replicated. Elsewhere it is rejected with a PROPOSAL_REJECTED event.

        Args:
            operation: The operation payload.

        Raises:
            NodeShutdownError: If the node was shut down.
        """
        self._ensure_open()
        self._submit(self._propose, operation)

    def sync_log(self, entries: Sequence[LogEntry], source_id: Optional[int] = None) -> None:
        """
        Replace this node's log with a copy of the given entries.

        Args:
            entries: The entries to copy, in log order.
            source_id: The node the entries were copied from, if any.
        """
        self._submit(self._sync_log, tuple(entries), source_id)

    def stop_heartbeats(self) -> None:
        """
        Cancel this node's timers and mark it inactive.
        """
        self._submit(self._deactivate, None)

    def simulate_failure(self) -> None:
        """
        Simulate a crash: the node stops sending and ignores every message.
        Idempotent.
        """
        self._submit(self._deactivate, EventType.NODE_FAILED)

    def shutdown(self) -> None:
        """
        Cancel all timers and release the node's timer resources. Terminal:
        start(), trigger_election() and propose() raise afterwards.
        """
        if self._closed:
            return
        self._closed = True
        self._submit(self._shutdown)

    # Mailbox.

    def _ensure_open(self) -> None:
        if self._closed:
            raise NodeShutdownError(self._node_id)

    def _submit(self, fn: Callable[..., None], *args: Any) -> None:
        with self._mailbox_lock:
            self._mailbox.append(partial(fn, *args))
            if self._draining:
                return
            self._draining = True
        self._drain()

    def _drain(self) -> None:
        while True:
            with self._mailbox_lock:
                if not self._mailbox:
                    self._draining = False
                    return
                work = self._mailbox.popleft()
            try:
                work()
            except Exception:
                self.logger.exception("Error while processing mailbox item")

    # Handlers. These run inside the critical section only.

    def _emit(self, event_type: EventType, **details: Any) -> None:
        self.events.emit(NodeEvent(type=event_type, node_id=self._node_id, term=self._term, details=details))

    def _peers(self) -> List[int]:
        if self.registry is None:
            return []
        return self.registry.peers_of(self._node_id)

    def _cluster_size(self) -> int:
        if self.registry is None:
            return 1
        return max(self.registry.size, 1)

    def _send(self, target_id: int, message: Message) -> None:
        transport = self.transport
        if transport is None:
            self.logger.debug(f"No transport, dropping {type(message).__name__} to {target_id}")
            return
        transport.send(target_id, message)

    def _start(self) -> None:
        if not self._active:
            return
        self._started = True
        self.logger.info("Started as FOLLOWER")
        self._emit(EventType.NODE_STARTED)
        self._reset_election_timer()

    def _reset_election_timer(self) -> None:
        """
        Cancel the pending election timeout and arm a new one with a random
        duration. Timers only run once the node was started.
        """
        self._cancel_election_timer()
        if not self._started or not self._active:
            return

        timeout = self.rng.uniform(self.election_timeout_min, self.election_timeout_max)
        self._election_timer = self.scheduler.call_later(
            timeout, partial(self._submit, self._trigger_election, self._election_generation)
        )

    def _cancel_election_timer(self) -> None:
        # Bumping the generation invalidates a timeout that already fired
        # but is still waiting in the mailbox.
        self._election_generation += 1
        if self._election_timer:
            self._election_timer.cancel()
            self._election_timer = None

    def _cancel_heartbeat_timer(self) -> None:
        if self._heartbeat_timer:
            self._heartbeat_timer.cancel()
            self._heartbeat_timer = None

    def _trigger_election(self, generation: Optional[int]) -> None:
        if generation is not None and generation != self._election_generation:
            return
        if not self._active or self._role == NodeRole.LEADER:
            return

        self._role = NodeRole.CANDIDATE
        self._term += 1
        self._voted_for = self._node_id
        self._votes = {self._node_id}
        self._leader_id = None
        self.logger.info(f"Starting election for term {self._term}")
        self._emit(EventType.ELECTION_STARTED)

        # Re-arming lets an election that never reaches a majority retry
        # with a new term.
        self._reset_election_timer()

        if self._has_majority():
            self._become_leader()
            return

        peers = self._peers()
        if peers:
            self._emit(EventType.VOTE_REQUESTED, peers=peers)
        for peer_id in peers:
            self._send(peer_id, RequestVote(candidate_id=self._node_id, term=self._term))

    def _has_majority(self) -> bool:
        return len(self._votes) > self._cluster_size() / 2

    def _dispatch(self, message: Message) -> None:
        if not self._active:
            self.logger.debug(f"Inactive, ignoring {type(message).__name__}")
            return

        if isinstance(message, RequestVote):
            self._handle_request_vote(message)
        elif isinstance(message, VoteGranted):
            self._handle_vote_granted(message)
        elif isinstance(message, Heartbeat):
            self._handle_heartbeat(message)
        elif isinstance(message, ReplicateEntries):
            self._handle_replicate_entries(message)
        else:
            self.logger.warning(f"Unknown message type: {type(message).__name__}")

    def _adopt_term(self, term: int) -> None:
        """
        Move to a strictly higher term and step down to follower.
        """
        previous = self._term
        self._term = term
        self._voted_for = None
        self._votes = set()
        self._leader_id = None
        self.logger.info(f"Updated term from {previous} to {term}")
        self._emit(EventType.TERM_UPDATED, previous_term=previous)
        self._become_follower()

    def _become_follower(self) -> None:
        if self._role == NodeRole.FOLLOWER:
            return

        previous = self._role
        self._role = NodeRole.FOLLOWER
        self._cancel_heartbeat_timer()
        self.logger.info(f"Stepped down from {previous.name} to FOLLOWER")
        self._emit(EventType.STEPPED_DOWN, previous_role=previous.name)
        self._reset_election_timer()

    def _handle_request_vote(self, message: RequestVote) -> None:
        self.logger.debug(f"Vote request from {message.candidate_id} for term {message.term}")

        if message.term > self._term:
            self._adopt_term(message.term)

        if (self._role == NodeRole.FOLLOWER
                and message.term == self._term
                and self._voted_for in (None, message.candidate_id)):
            self._voted_for = message.candidate_id
            self.logger.info(f"Voted for {message.candidate_id} in term {self._term}")
            self._emit(EventType.VOTE_GRANTED, candidate_id=message.candidate_id)
            self._reset_election_timer()
            self._send(message.candidate_id, VoteGranted(voter_id=self._node_id, term=self._term))
        else:
            self.logger.debug(
                f"Rejected vote for {message.candidate_id} in term {message.term} "
                f"(role={self._role.name}, term={self._term}, voted_for={self._voted_for})"
            )

    def _handle_vote_granted(self, message: VoteGranted) -> None:
        if self._role != NodeRole.CANDIDATE or message.term != self._term:
            self.logger.debug(f"Ignoring vote from {message.voter_id} for term {message.term}")
            return

        self._votes.add(message.voter_id)
        cluster_size = self._cluster_size()
        self.logger.info(f"Received vote from {message.voter_id}, total votes: {len(self._votes)}/{cluster_size}")
        self._emit(EventType.VOTE_RECEIVED, voter_id=message.voter_id, votes=len(self._votes),
                   cluster_size=cluster_size)

        if self._has_majority():
            self._become_leader()

    def _become_leader(self) -> None:
        if self._role != NodeRole.CANDIDATE or not self._active:
            return

        self._role = NodeRole.LEADER
        self._leader_id = self._node_id
        self._cancel_election_timer()
        self.logger.info(f"Became leader for term {self._term} with {len(self._votes)} votes")
        self._emit(EventType.BECAME_LEADER, votes=len(self._votes), cluster_size=self._cluster_size())

        for operation in self.leader_operations:
            self.log.append(operation)
        self._persist()

        self._heartbeat_timer = self.scheduler.call_every(
            self.heartbeat_interval, partial(self._submit, self._send_heartbeats)
        )
        self._send_heartbeats()
        self._replicate_log_entries()

    def _persist(self) -> None:
        pending = self.log.entries_from(self._persisted)
        if not pending and not self._storage_diverged:
            return

        try:
            if self._storage_diverged:
                pending = self.log.entries_from(0)
                ok = self.storage.replace(pending)
            else:
                ok = self.storage.append(pending)
        except Exception as e:
            self.logger.error(f"Storage raised while writing: {e}")
            ok = False

        if ok:
            self._persisted = len(self.log)
            self._storage_diverged = False
        else:
            self.logger.warning(f"Could not persist {len(pending)} entries, continuing in memory")
            self._emit(EventType.PERSIST_FAILED, count=len(pending))

    def _send_heartbeats(self) -> None:
        if self._role != NodeRole.LEADER or not self._active:
            return

        peers = self._peers()
        self.logger.debug(f"Sending heartbeats to {peers}")
        self._emit(EventType.HEARTBEAT_SENT, peers=peers)
        for peer_id in peers:
            self._send(peer_id, Heartbeat(leader_id=self._node_id, term=self._term))

    def _accept_leader(self, leader_id: int, term: int) -> bool:
        """
        Common handling for heartbeats and replication from a leader.

        Returns:
            True if the sender is accepted as the leader of the current term.
        """
        if term < self._term:
            self.logger.debug(f"Ignoring stale message from {leader_id} for term {term}")
            return False

        if term > self._term:
            self._adopt_term(term)
        elif self._role == NodeRole.LEADER:
            self.logger.warning(f"Node {leader_id} also claims leadership of term {term}")
            return False
        else:
            self._become_follower()

        self._leader_id = leader_id
        self._reset_election_timer()
        return True

    def _handle_heartbeat(self, message: Heartbeat) -> None:
        if self._accept_leader(message.leader_id, message.term):
            self._emit(EventType.HEARTBEAT_RECEIVED, leader_id=message.leader_id)

    def _handle_replicate_entries(self, message: ReplicateEntries) -> None:
        if self._accept_leader(message.leader_id, message.term):
            self._sync_log(message.entries, message.leader_id)

    def _replicate_log_entries(self) -> None:
        if self._role != NodeRole.LEADER or not self._active:
            return

        entries = self.log.snapshot()
        peers = self._peers()
        for peer_id in peers:
            self._send(peer_id, ReplicateEntries(leader_id=self._node_id, term=self._term, entries=entries))
        self.logger.debug(f"Replicated {len(entries)} entries to {peers}")
        self._emit(EventType.ENTRIES_REPLICATED, peers=peers, count=len(entries))

    def _sync_log(self, entries: Tuple[LogEntry, ...], source_id: Optional[int]) -> None:
        if not self._active:
            return

        common = self.log.replace(entries)
        if common < self._persisted:
            self._storage_diverged = True
            self._persisted = common
        self.logger.debug(f"Synchronized {len(entries)} entries from {source_id}")
        self._emit(EventType.LOG_SYNCED, source_id=source_id, count=len(entries))

    def _propose(self, operation: str) -> None:
        if not self._active or self._role != NodeRole.LEADER:
            self.logger.warning(f"Rejected operation {operation!r}: not the leader (leader is {self._leader_id})")
            self._emit(EventType.PROPOSAL_REJECTED, operation=operation, leader_id=self._leader_id)
            return

        entry = self.log.append(operation)
        self._emit(EventType.ENTRY_PROPOSED, sequence_id=entry.sequence_id, operation=operation)
        self._persist()
        self._replicate_log_entries()

    def _deactivate(self, event_type: Optional[EventType]) -> None:
        if not self._active:
            return

        self._active = False
        self._cancel_heartbeat_timer()
        self._cancel_election_timer()
        if event_type is EventType.NODE_FAILED:
            self.logger.warning("Simulated failure, node is now inactive")
        else:
            self.logger.info("Stopped, node is now inactive")
        if event_type is not None:
            self._emit(event_type)

    def _shutdown(self) -> None:
        self._deactivate(None)
        if self._owns_scheduler:
            self.scheduler.close()
        self.logger.info("Shut down")
        self._emit(EventType.NODE_SHUTDOWN)
