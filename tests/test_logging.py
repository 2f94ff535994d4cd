import unittest
import os
import sys
import json
import shutil
import tempfile
import logging

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from raftsim.core.constants import NodeRole
from raftsim.core.events import EventType, NodeEvent
from raftsim.core.node import RaftNode
from raftsim.core.timer import ManualScheduler
from raftsim.utils.logging_config import EventLogger, JsonFilter, NodeContextFormatter, setup_logging


def make_record(msg='hello', **extra):
    record = logging.LogRecord('raft.test', logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestNodeContextFormatter(unittest.TestCase):
    """Test the NodeContextFormatter class."""

    def test_plain_message(self):
        """Test that records without node context are left alone."""
        formatter = NodeContextFormatter('%(message)s')

        self.assertEqual(formatter.format(make_record()), 'hello')

    def test_node_context_appended(self):
        """Test that node context is appended to the message."""
        formatter = NodeContextFormatter('%(message)s')
        record = make_record(node_id=2, role=NodeRole.CANDIDATE, term=3)

        self.assertEqual(formatter.format(record), 'hello [node_id=2 role=CANDIDATE term=3]')

    def test_json_output(self):
        """Test that the JSON filter switches the output to JSON."""
        formatter = NodeContextFormatter('%(message)s')
        record = make_record(node_id=1, role=NodeRole.LEADER, term=5)
        JsonFilter().filter(record)

        data = json.loads(formatter.format(record))

        self.assertEqual(data['message'], 'hello')
        self.assertEqual(data['level'], 'INFO')
        self.assertEqual(data['node_id'], 1)
        self.assertEqual(data['role'], 'LEADER')
        self.assertEqual(data['term'], 5)


class TestNodeLoggerAdapter(unittest.TestCase):
    """Test that node loggers stamp records with node state."""

    def test_records_carry_node_state(self):
        """Test that node_id, role and term reach the log record."""
        node = RaftNode(3, scheduler=ManualScheduler())

        with self.assertLogs('raft.node.3', level='INFO') as captured:
            node.trigger_election()

        records = captured.records
        self.assertTrue(records)
        self.assertTrue(all(r.node_id == 3 for r in records))
        self.assertIn(NodeRole.LEADER, [r.role for r in records])
        self.assertEqual(records[-1].term, 1)

    def test_explicit_extra_wins(self):
        """Test that an explicit extra value is not overwritten."""
        node = RaftNode(3, scheduler=ManualScheduler())

        with self.assertLogs('raft.node.3', level='INFO') as captured:
            node.logger.info('custom', extra={'term': 42})

        self.assertEqual(captured.records[0].term, 42)
        self.assertEqual(captured.records[0].node_id, 3)


class TestEventLogger(unittest.TestCase):
    """Test the EventLogger listener."""

    def test_levels(self):
        """Test that heartbeats are logged at DEBUG and other events at INFO."""
        listener = EventLogger()

        with self.assertLogs('raft.events', level='DEBUG') as captured:
            listener(NodeEvent(EventType.HEARTBEAT_SENT, 1, 2, {'peers': [2, 3]}))
            listener(NodeEvent(EventType.BECAME_LEADER, 1, 2, {'votes': 2}))

        levels = [r.levelno for r in captured.records]
        self.assertEqual(levels, [logging.DEBUG, logging.INFO])
        self.assertEqual(captured.records[1].getMessage(), 'became_leader votes=2')
        self.assertEqual(captured.records[1].node_id, 1)
        self.assertEqual(captured.records[1].term, 2)


class TestSetupLogging(unittest.TestCase):
    """Test the setup_logging function."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.root = logging.getLogger()
        self.saved_handlers = list(self.root.handlers)
        self.saved_level = self.root.level

    def tearDown(self):
        for handler in list(self.root.handlers):
            self.root.removeHandler(handler)
            handler.close()
        for handler in self.saved_handlers:
            self.root.addHandler(handler)
        self.root.setLevel(self.saved_level)
        shutil.rmtree(self.temp_dir)

    def test_console_only(self):
        """Test that no files are written without a log directory."""
        logger = setup_logging()

        self.assertEqual(logger.name, 'raft.simulation')
        self.assertEqual(len(self.root.handlers), 1)
        self.assertEqual(os.listdir(self.temp_dir), [])

    def test_log_files(self):
        """Test that text and JSON log files are written to the log directory."""
        log_dir = os.path.join(self.temp_dir, 'logs')
        setup_logging(log_dir=log_dir, enable_json=True)

        logging.getLogger('raft.node.1').info('hello', extra={'node_id': 1, 'term': 2})
        for handler in self.root.handlers:
            handler.flush()

        with open(os.path.join(log_dir, 'raft-simulation.log')) as f:
            self.assertIn('hello [node_id=1 term=2]', f.read())
        with open(os.path.join(log_dir, 'raft-simulation-json.log')) as f:
            lines = [json.loads(line) for line in f if line.strip()]
        self.assertIn({'node_id': 1, 'term': 2, 'message': 'hello'},
                      [{k: line[k] for k in ('node_id', 'term', 'message') if k in line} for line in lines])


if __name__ == '__main__':
    unittest.main()
