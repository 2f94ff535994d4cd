from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LogEntry:
    """
    Represents a single entry in a node's log.

    Attributes:
        sequence_id: Caller-assigned sequence number. Not unique across nodes.
        operation: Opaque operation payload.
        created_at: When the entry was captured (timezone-aware UTC).
    """
    sequence_id: int
    operation: str
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the entry to a msgpack/JSON friendly dictionary.

        Returns:
            A dictionary with the entry fields; the timestamp is ISO 8601.
        """
        return {
            'sequence_id': self.sequence_id,
            'operation': self.operation,
            'created_at': self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LogEntry':
        """
        Rebuild an entry from the output of to_dict(), keeping its timestamp.

        Args:
            data: The dictionary to read.

        Returns:
            The reconstructed log entry.

        Raises:
            ValueError: If a field is missing or malformed.
        """
        try:
            return cls(
                sequence_id=int(data['sequence_id']),
                operation=str(data['operation']),
                created_at=datetime.fromisoformat(data['created_at']),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed log entry {data!r}: {e}") from e


class RaftLog:
    """
    The ordered sequence of entries owned by a single node.

    Entries are only appended while the node runs normally; the whole log is
    replaced when the node is synchronized from a leader.
    """

    def __init__(self, entries: Optional[Iterable[LogEntry]] = None):
        """
        Initialize a new log.

        Args:
            entries: Entries to seed the log with, in order.
        """
        self._entries: List[LogEntry] = list(entries or [])

    def append(self, operation: str) -> LogEntry:
        """
        Append a new entry whose sequence id is its position in the log.

        Args:
            operation: The operation payload.

        Returns:
            The newly created log entry.
        """
        entry = LogEntry(sequence_id=len(self._entries), operation=operation)
        self._entries.append(entry)
        return entry

    def replace(self, entries: Iterable[LogEntry]) -> int:
        """
        Replace the whole log with a copy of the given entries.

        Args:
            entries: The new contents, in log order.

        Returns:
            The length of the prefix shared by the old and the new log.
        """
        new_entries = list(entries)
        common = 0
        for old, new in zip(self._entries, new_entries):
            if old != new:
                break
            common += 1
        self._entries = new_entries
        return common

    def get_entry(self, position: int) -> Optional[LogEntry]:
        """
        Get the entry at a 0-based position, or None when out of bounds.
        """
        if 0 <= position < len(self._entries):
            return self._entries[position]
        return None

    def entries_from(self, position: int) -> List[LogEntry]:
        return self._entries[max(position, 0):]

    def snapshot(self) -> Tuple[LogEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))
