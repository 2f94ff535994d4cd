"""
Driver scenario: build a cluster, let it elect a leader, fail a node, add a
new node, optionally remove one, then shut everything down.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import asyncio
import logging
import os
import random

from raftsim.config import SimulationConfig
from raftsim.core.events import EventBus, NodeEvent
from raftsim.core.node import RaftNode
from raftsim.core.registry import ClusterRegistry
from raftsim.core.storage import FileLogStorage, LogStorage, MemoryLogStorage
from raftsim.core.timer import AsyncioScheduler
from raftsim.utils.logging_config import EventLogger


@dataclass
class NodeSummary:
    node_id: int
    term: int
    role: str
    log_length: int
    active: bool


@dataclass
class SimulationReport:
    """
    Outcome of a simulation run.

    Attributes:
        leader_id: The leader at the end of the run, if any.
        nodes: Final state of every node that took part.
        events: Every event emitted during the run, in order.
    """
    leader_id: Optional[int]
    nodes: Dict[int, NodeSummary] = field(default_factory=dict)
    events: List[NodeEvent] = field(default_factory=list)


def _make_storage(config: SimulationConfig, node_id: int) -> LogStorage:
    if config.storage_dir:
        return FileLogStorage(os.path.join(config.storage_dir, f"node-{node_id}.log"))
    return MemoryLogStorage()


def _build_report(registry: ClusterRegistry, nodes: Dict[int, RaftNode], events: List[NodeEvent]) -> SimulationReport:
    # A failed leader keeps its role, so only active members count.
    leader = next((node for node in registry.members() if node.active and node.is_leader), None)
    report = SimulationReport(leader_id=leader.node_id if leader else None, events=events)
    for node_id, node in nodes.items():
        report.nodes[node_id] = NodeSummary(
            node_id=node_id,
            term=node.term,
            role=node.role.name,
            log_length=len(node.entries),
            active=node.active,
        )
    return report


async def run_simulation(config: SimulationConfig, events: Optional[EventBus] = None) -> SimulationReport:
    """
    Run the failure/join scenario on the running event loop.

    Args:
        config: The simulation settings.
        events: Event bus to emit on. A new one is created if None.

    Returns:
        A report of the cluster state at the end of the last phase, taken
        before the nodes are shut down.
    """
    config.validate()
    logger = logging.getLogger("raft.simulation")

    bus = events if events is not None else EventBus()
    recorded: List[NodeEvent] = []
    bus.subscribe(recorded.append)
    bus.subscribe(EventLogger())

    registry = ClusterRegistry(events=bus, serialize_messages=config.serialize_messages)
    scheduler = AsyncioScheduler()
    seeds = random.Random(config.seed)
    nodes: Dict[int, RaftNode] = {}

    def make_node(node_id: int) -> RaftNode:
        node = RaftNode(
            node_id,
            storage=_make_storage(config, node_id),
            scheduler=scheduler,
            rng=random.Random(seeds.randrange(2 ** 32)),
            events=bus,
            election_timeout_min=config.election_timeout_min,
            election_timeout_max=config.election_timeout_max,
            heartbeat_interval=config.heartbeat_interval,
        )
        nodes[node_id] = node
        return node

    async def wait(ms: float) -> None:
        await asyncio.sleep(ms * config.time_scale / 1000)

    try:
        for node_id in config.node_ids:
            registry.add_server(make_node(node_id))
        for node_id in config.node_ids:
            nodes[node_id].start()

        await wait(3000)

        failed = nodes[config.node_ids[-1]]
        logger.info(f"Simulating failure of node {failed.node_id}")
        failed.simulate_failure()

        await wait(10000)

        joiner = make_node(config.joining_node_id)
        registry.add_server(joiner)
        joiner.start()

        await wait(3000)

        if config.remove_node_id is not None:
            logger.info(f"Removing node {config.remove_node_id}")
            registry.remove_server(nodes[config.remove_node_id])

        await wait(15000)

        report = _build_report(registry, nodes, recorded)
    finally:
        for node in nodes.values():
            node.shutdown()
        scheduler.close()

    logger.info(f"Simulation finished, leader: {report.leader_id}")
    return report
