import logging
import json
import time
import os
from typing import Any, Dict, List, MutableMapping, Optional, Tuple
from enum import Enum

# Record attributes that describe the node a record is about, in output order.
NODE_FIELDS = ('node_id', 'role', 'term')


def _plain(value: Any) -> Any:
    return value.name if isinstance(value, Enum) else value


class NodeContextFormatter(logging.Formatter):
    """Formatter that appends the emitting node's state to each record."""

    def node_fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        """
        Collect node_id, role and term from a record, skipping missing ones.
        Roles are rendered by name.
        """
        found = {}
        for name in NODE_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                found[name] = _plain(value)
        return found

    def format(self, record):
        """
        Format a record as text, or as a JSON object when the record was
        marked by JsonFilter.
        """
        text = super().format(record)
        node = self.node_fields(record)

        if getattr(record, 'json_format', False):
            document = {
                'timestamp': time.time(),
                'level': record.levelname,
                'logger': record.name,
                'message': record.getMessage(),
            }
            document.update(node)
            return json.dumps(document)

        if not node:
            return text
        suffix = ' '.join(f"{name}={value}" for name, value in node.items())
        return f"{text} [{suffix}]"


class JsonFilter(logging.Filter):
    """Marks records so NodeContextFormatter renders them as JSON."""

    def filter(self, record):
        record.json_format = True
        return True


class NodeLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that stamps every record with the node's current id,
    role and term.
    """

    def __init__(self, logger: logging.Logger, node: Any):
        super().__init__(logger, {})
        self.node = node

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get('extra') or {})
        extra.setdefault('node_id', self.node.node_id)
        extra.setdefault('role', self.node.role)
        extra.setdefault('term', self.node.term)
        kwargs['extra'] = extra
        return msg, kwargs


def _handler(handler: logging.Handler, formatter: logging.Formatter, level: int) -> logging.Handler:
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def setup_logging(log_dir: Optional[str] = None,
                  log_level: int = logging.INFO,
                  enable_json: bool = False) -> logging.Logger:
    """
    Configure the root logger for a simulation run.

    Args:
        log_dir: Directory for raft-simulation.log. If None, only console logging is used.
        log_level: Logging level (default: INFO).
        enable_json: Whether to also write raft-simulation-json.log (default: False).

    Returns:
        The simulation logger.
    """
    text_formatter = NodeContextFormatter(
        '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # The JSON handler goes last: JsonFilter marks the shared record.
    handlers: List[logging.Handler] = [_handler(logging.StreamHandler(), text_formatter, log_level)]

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(_handler(
            logging.FileHandler(os.path.join(log_dir, "raft-simulation.log")), text_formatter, log_level
        ))

        if enable_json:
            json_handler = _handler(
                logging.FileHandler(os.path.join(log_dir, "raft-simulation-json.log")),
                NodeContextFormatter('%(message)s'),
                log_level,
            )
            json_handler.addFilter(JsonFilter())
            handlers.append(json_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logger = logging.getLogger("raft.simulation")
    logger.info(f"Logging initialized (level={logging.getLevelName(log_level)}, log_dir={log_dir})")
    return logger


class EventLogger:
    """
    Event bus listener that writes every node event to the log.

    Heartbeat traffic is logged at DEBUG, everything else at INFO.
    """

    QUIET_EVENTS = ('heartbeat_sent', 'heartbeat_received')

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("raft.events")

    def __call__(self, event) -> None:
        level = logging.DEBUG if event.type.value in self.QUIET_EVENTS else logging.INFO
        details = ' '.join(f"{k}={v}" for k, v in event.details.items())
        self.logger.log(
            level,
            f"{event.type.value} {details}".rstrip(),
            extra={'node_id': event.node_id, 'term': event.term},
        )
