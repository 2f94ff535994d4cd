from abc import ABC, abstractmethod
from typing import List, Optional, Sequence
import logging
import os

import msgpack

from raftsim.core.log import LogEntry


class LogStorage(ABC):
    """
    Abstract base class for the persistence collaborator of a node.

    A storage durably keeps log entries and hands them back, in order, when a
    node starts. Implementations must not raise for expected I/O conditions:
    they report failure through return values instead.
    """

    @abstractmethod
    def append(self, entries: Sequence[LogEntry]) -> bool:
        """
        Durably append entries after the ones already stored.

        Args:
            entries: The entries to persist, in log order.

        Returns:
            True if the entries were persisted, False otherwise.
        """
        pass

    @abstractmethod
    def replace(self, entries: Sequence[LogEntry]) -> bool:
        """
        Durably replace everything stored with the given entries.

        Used when the stored history diverged from the node's log and can no
        longer be extended by appending.

        Args:
            entries: The complete log, in order.

        Returns:
            True if the stored entries were replaced, False otherwise.
        """
        pass

    @abstractmethod
    def load_all(self) -> List[LogEntry]:
        """
        Load every stored entry.

        Returns:
            The stored entries in the order they were appended, or an empty
            list if nothing was stored yet or the stored data is unreadable.
        """
        pass


class MemoryLogStorage(LogStorage):
    """
    Storage that keeps entries in memory. Useful for tests and simulations
    that do not need durability.
    """

    def __init__(self, entries: Optional[Sequence[LogEntry]] = None):
        self._entries: List[LogEntry] = list(entries or [])

    def append(self, entries: Sequence[LogEntry]) -> bool:
        self._entries.extend(entries)
        return True

    def replace(self, entries: Sequence[LogEntry]) -> bool:
        self._entries = list(entries)
        return True

    def load_all(self) -> List[LogEntry]:
        return list(self._entries)


class FileLogStorage(LogStorage):
    """
    File storage, appended to in the common case.

    Each entry is written as one msgpack-encoded map, so the file is a plain
    stream of records that can be read back with a streaming unpacker. The
    original timestamp of each entry is preserved.
    """

    def __init__(self, path: str):
        """
        Initialize a new file storage.

        Args:
            path: Path of the log file. Parent directories are created on
                first write.
        """
        self.path = path
        self.logger = logging.getLogger("raft.storage")

    def append(self, entries: Sequence[LogEntry]) -> bool:
        if not entries:
            return True

        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            with open(self.path, 'ab') as f:
                for entry in entries:
                    f.write(msgpack.packb(entry.to_dict(), use_bin_type=True))
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            self.logger.error(f"Failed to append {len(entries)} entries to {self.path}: {e}")
            return False

        self.logger.debug(f"Appended {len(entries)} entries to {self.path}")
        return True

    def replace(self, entries: Sequence[LogEntry]) -> bool:
        # Written to a sibling file and swapped in: a crash leaves either the
        # old or the new log on disk.
        temp_path = f"{self.path}.tmp"
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            with open(temp_path, 'wb') as f:
                for entry in entries:
                    f.write(msgpack.packb(entry.to_dict(), use_bin_type=True))
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        except OSError as e:
            self.logger.error(f"Failed to rewrite {self.path} with {len(entries)} entries: {e}")
            return False

        self.logger.info(f"Rewrote {self.path} with {len(entries)} entries")
        return True

    def load_all(self) -> List[LogEntry]:
        if not os.path.exists(self.path):
            self.logger.info(f"No log file at {self.path}, starting with an empty log")
            return []

        entries = []
        try:
            with open(self.path, 'rb') as f:
                unpacker = msgpack.Unpacker(f, raw=False)
                for record in unpacker:
                    if not isinstance(record, dict):
                        raise ValueError(f"Unexpected record type {type(record).__name__}")
                    entries.append(LogEntry.from_dict(record))
        except OSError as e:
            self.logger.error(f"Failed to read log file {self.path}: {e}")
            return []
        except (ValueError, msgpack.exceptions.UnpackException) as e:
            self.logger.error(f"Corrupt log file {self.path}, ignoring stored entries: {e}")
            return []

        self.logger.info(f"Loaded {len(entries)} entries from {self.path}")
        return entries
