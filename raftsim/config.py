"""
Configuration of a simulation run, loaded from a JSON file.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional
import json

from raftsim.core.constants import ELECTION_TIMEOUT_MAX, ELECTION_TIMEOUT_MIN, HEARTBEAT_INTERVAL
from raftsim.core.exceptions import ConfigError


@dataclass
class SimulationConfig:
    """
    Settings for run_simulation().

    Attributes:
        node_ids: IDs of the nodes that form the initial cluster.
        joining_node_id: ID of the node added after the failure.
        election_timeout_min: Minimum election timeout in milliseconds.
        election_timeout_max: Maximum election timeout in milliseconds.
        heartbeat_interval: Heartbeat interval in milliseconds.
        seed: Seed for the random election timeouts. None for a random seed.
        storage_dir: Directory for per-node log files. None keeps logs in memory.
        log_dir: Directory for log output. None logs to the console only.
        time_scale: Multiplier applied to every phase of the scenario.
        remove_node_id: Node removed from the cluster after the join, if any.
        serialize_messages: Whether messages go through the wire codec.
    """
    node_ids: List[int] = field(default_factory=lambda: [1, 2, 3])
    joining_node_id: int = 4
    election_timeout_min: float = ELECTION_TIMEOUT_MIN
    election_timeout_max: float = ELECTION_TIMEOUT_MAX
    heartbeat_interval: float = HEARTBEAT_INTERVAL
    seed: Optional[int] = None
    storage_dir: Optional[str] = None
    log_dir: Optional[str] = None
    time_scale: float = 1.0
    remove_node_id: Optional[int] = None
    serialize_messages: bool = False

    def validate(self) -> None:
        """
        Check the settings for consistency.

        Raises:
            ConfigError: If a setting is invalid.
        """
        if not self.node_ids:
            raise ConfigError("node_ids must not be empty")
        all_ids = list(self.node_ids) + [self.joining_node_id]
        for node_id in all_ids:
            if isinstance(node_id, bool) or not isinstance(node_id, int) or node_id < 0:
                raise ConfigError(f"Node IDs must be non-negative integers, got {node_id!r}")
        if len(set(all_ids)) != len(all_ids):
            raise ConfigError(f"Node IDs must be unique, got {all_ids}")
        if self.election_timeout_min <= 0 or self.election_timeout_max < self.election_timeout_min:
            raise ConfigError(
                f"Invalid election timeout range [{self.election_timeout_min}, {self.election_timeout_max}]"
            )
        if self.heartbeat_interval <= 0:
            raise ConfigError("heartbeat_interval must be positive")
        if self.time_scale <= 0:
            raise ConfigError("time_scale must be positive")
        if self.remove_node_id is not None and self.remove_node_id not in all_ids:
            raise ConfigError(f"remove_node_id {self.remove_node_id} is not a cluster node")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SimulationConfig':
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {sorted(unknown)}")

        config = cls(**data)
        config.validate()
        return config


def load_config(path: str, overrides: Optional[Dict[str, Any]] = None) -> SimulationConfig:
    """
    Load a simulation configuration from a JSON file.

    Args:
        path: Path to the JSON file.
        overrides: Values that take precedence over the file (e.g. CLI flags).
            Keys whose value is None are ignored.

    Returns:
        The validated configuration.

    Raises:
        ConfigError: If the file cannot be read or holds invalid settings.
    """
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read configuration {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration {path} must hold a JSON object")

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    return SimulationConfig.from_dict(data)
