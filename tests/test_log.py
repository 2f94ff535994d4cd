import unittest
import os
import sys
import tempfile
import shutil
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import msgpack

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from raftsim.core.log import LogEntry, RaftLog
from raftsim.core.storage import FileLogStorage, MemoryLogStorage


class TestLogEntry(unittest.TestCase):
    """Test the LogEntry class."""

    def test_immutable(self):
        """Test that entries cannot be modified once built."""
        entry = LogEntry(0, 'Operation 1')

        with self.assertRaises(AttributeError):
            entry.operation = 'changed'

    def test_created_at_defaults_to_now(self):
        """Test that entries capture a UTC timestamp at construction."""
        before = datetime.now(timezone.utc)
        entry = LogEntry(0, 'Operation 1')
        after = datetime.now(timezone.utc)

        self.assertLessEqual(before, entry.created_at)
        self.assertLessEqual(entry.created_at, after)

    def test_dict_conversion_keeps_timestamp(self):
        """Test that the original timestamp survives to_dict/from_dict."""
        created = datetime(2024, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)
        entry = LogEntry(7, 'set x', created)

        restored = LogEntry.from_dict(entry.to_dict())

        self.assertEqual(restored, entry)
        self.assertEqual(restored.created_at, created)

    def test_from_dict_rejects_missing_fields(self):
        """Test that malformed dictionaries raise ValueError."""
        with self.assertRaises(ValueError):
            LogEntry.from_dict({'sequence_id': 1, 'operation': 'x'})


class TestRaftLog(unittest.TestCase):
    """Test the RaftLog class."""

    def test_append_assigns_positions(self):
        """Test appending entries to the log and retrieving them."""
        log = RaftLog()

        entry1 = log.append('Operation 1')
        entry2 = log.append('Operation 2')

        self.assertEqual(entry1.sequence_id, 0)
        self.assertEqual(entry2.sequence_id, 1)
        self.assertEqual(len(log), 2)
        self.assertEqual(log.get_entry(0), entry1)
        self.assertEqual(log.get_entry(1), entry2)
        self.assertIsNone(log.get_entry(2))
        self.assertIsNone(log.get_entry(-1))

    def test_seeded_entries(self):
        """Test that a log can be seeded from stored entries."""
        stored = [LogEntry(0, 'a'), LogEntry(1, 'b')]
        log = RaftLog(stored)

        self.assertEqual(log.snapshot(), tuple(stored))
        self.assertEqual(log.append('c').sequence_id, 2)

    def test_entries_from(self):
        """Test getting entries from a position."""
        log = RaftLog()
        log.append('a')
        entry_b = log.append('b')
        entry_c = log.append('c')

        self.assertEqual(log.entries_from(1), [entry_b, entry_c])
        self.assertEqual(log.entries_from(3), [])
        self.assertEqual(len(log.entries_from(-5)), 3)

    def test_replace_reports_common_prefix(self):
        """Test that replacing the log returns the shared prefix length."""
        log = RaftLog()
        a = log.append('a')
        log.append('b')

        common = log.replace([a, LogEntry(1, 'other'), LogEntry(2, 'c')])

        self.assertEqual(common, 1)
        self.assertEqual([e.operation for e in log], ['a', 'other', 'c'])

    def test_snapshot_is_a_copy(self):
        """Test that snapshots are not affected by later appends."""
        log = RaftLog()
        log.append('a')
        snapshot = log.snapshot()

        log.append('b')

        self.assertEqual(len(snapshot), 1)


class TestMemoryLogStorage(unittest.TestCase):
    """Test the MemoryLogStorage class."""

    def test_append_and_load(self):
        """Test that appended entries are returned in order."""
        storage = MemoryLogStorage()
        entries = [LogEntry(0, 'a'), LogEntry(1, 'b')]

        self.assertEqual(storage.load_all(), [])
        self.assertTrue(storage.append(entries[:1]))
        self.assertTrue(storage.append(entries[1:]))
        self.assertEqual(storage.load_all(), entries)

    def test_replace(self):
        """Test that replace discards previously stored entries."""
        storage = MemoryLogStorage([LogEntry(0, 'old')])
        entries = [LogEntry(0, 'a'), LogEntry(1, 'b')]

        self.assertTrue(storage.replace(entries))
        self.assertEqual(storage.load_all(), entries)


class TestFileLogStorage(unittest.TestCase):
    """Test the FileLogStorage class."""

    def setUp(self):
        logging.disable(logging.CRITICAL)
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, 'logs', 'node-1.log')

    def tearDown(self):
        shutil.rmtree(self.temp_dir)
        logging.disable(logging.NOTSET)

    def test_load_missing_file(self):
        """Test that a missing file loads as an empty log."""
        storage = FileLogStorage(self.path)

        self.assertEqual(storage.load_all(), [])

    def test_round_trip(self):
        """Test that loading returns what was appended, timestamps included."""
        base = datetime(2024, 5, 1, tzinfo=timezone.utc)
        entries = [LogEntry(i, f'Operation {i}', base + timedelta(seconds=i)) for i in range(3)]
        storage = FileLogStorage(self.path)

        self.assertTrue(storage.append(entries[:2]))
        self.assertTrue(storage.append(entries[2:]))

        self.assertEqual(FileLogStorage(self.path).load_all(), entries)

    def test_operation_with_delimiters(self):
        """Test that operations containing separators are stored verbatim."""
        entry = LogEntry(0, 'a | b, c\nd')
        storage = FileLogStorage(self.path)
        storage.append([entry])

        self.assertEqual(storage.load_all(), [entry])

    def test_append_empty_is_noop(self):
        """Test that appending nothing does not create the file."""
        storage = FileLogStorage(self.path)

        self.assertTrue(storage.append([]))
        self.assertFalse(os.path.exists(self.path))

    def test_replace_rewrites_file(self):
        """Test that replace leaves exactly the new entries on disk."""
        storage = FileLogStorage(self.path)
        storage.append([LogEntry(0, 'old-a'), LogEntry(1, 'old-b')])
        entries = [LogEntry(0, 'a')]

        self.assertTrue(storage.replace(entries))

        self.assertEqual(FileLogStorage(self.path).load_all(), entries)
        self.assertFalse(os.path.exists(self.path + '.tmp'))

        self.assertTrue(storage.append([LogEntry(1, 'b')]))
        self.assertEqual([e.operation for e in storage.load_all()], ['a', 'b'])

    def test_replace_failure_keeps_old_log(self):
        """Test that a failed rewrite leaves the stored log untouched."""
        storage = FileLogStorage(self.path)
        old = [LogEntry(0, 'old')]
        storage.append(old)

        with patch('raftsim.core.storage.os.replace', side_effect=OSError('busy')):
            self.assertFalse(storage.replace([LogEntry(0, 'new')]))

        self.assertEqual(storage.load_all(), old)

    def test_append_failure_returns_false(self):
        """Test that I/O errors are reported as a failed append."""
        storage = FileLogStorage(self.temp_dir)

        self.assertFalse(storage.append([LogEntry(0, 'a')]))

    def test_load_io_error_returns_empty(self):
        """Test that a read error degrades to an empty log."""
        storage = FileLogStorage(self.path)
        storage.append([LogEntry(0, 'a')])

        with patch('builtins.open', side_effect=PermissionError('denied')):
            self.assertEqual(storage.load_all(), [])

    def test_load_corrupt_record_returns_empty(self):
        """Test that a record that is not an entry degrades to an empty log."""
        storage = FileLogStorage(self.path)
        storage.append([LogEntry(0, 'a')])
        with open(self.path, 'ab') as f:
            f.write(msgpack.packb(42))

        self.assertEqual(storage.load_all(), [])

    def test_load_incomplete_record_returns_empty(self):
        """Test that a record with missing fields degrades to an empty log."""
        path = os.path.join(self.temp_dir, 'broken.log')
        with open(path, 'wb') as f:
            f.write(msgpack.packb({'sequence_id': 0}, use_bin_type=True))
        storage = FileLogStorage(path)

        self.assertEqual(storage.load_all(), [])


if __name__ == '__main__':
    unittest.main()
