"""
Unit Tests for Logging Setup
============================
"""

import unittest
import logging
import json
import os
import sys

# Add parent directory for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))

from backup_system.logging_config import StructuredFormatter, setup_logging


class TestStructuredFormatter(unittest.TestCase):
    """Test JSON log lines."""

    def _record(self, extra=None):
        logger = logging.getLogger('backup_system.test')
        return logger.makeRecord('backup_system.test', logging.INFO, __file__, 10,
                                 'grow step %s done', ('resize',), None, extra=extra)

    def test_extra_fields_included(self):
        record = self._record({'operation': 'grow:resize', 'path': '/srv/backup/mnt',
                               'duration_ms': 12.5})

        entry = json.loads(StructuredFormatter().format(record))

        self.assertEqual(entry['message'], 'grow step resize done')
        self.assertEqual(entry['operation'], 'grow:resize')
        self.assertEqual(entry['path'], '/srv/backup/mnt')
        self.assertEqual(entry['duration_ms'], 12.5)

    def test_extra_fields_absent(self):
        entry = json.loads(StructuredFormatter().format(self._record()))

        self.assertEqual(entry['level'], 'INFO')
        self.assertNotIn('operation', entry)
        self.assertNotIn('duration_ms', entry)


class TestSetupLogging(unittest.TestCase):
    """Test root logger configuration."""

    def setUp(self):
        root = logging.getLogger()
        self.saved_handlers = list(root.handlers)
        self.saved_level = root.level

    def tearDown(self):
        root = logging.getLogger()
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in self.saved_handlers:
            root.addHandler(handler)
        root.setLevel(self.saved_level)

    def test_structured_verbose(self):
        setup_logging(verbose=True, structured=True)

        root = logging.getLogger()
        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(len(root.handlers), 1)
        self.assertIsInstance(root.handlers[0].formatter, StructuredFormatter)

    def test_plain_default(self):
        setup_logging()

        root = logging.getLogger()
        self.assertEqual(root.level, logging.INFO)
        self.assertNotIsInstance(root.handlers[0].formatter, StructuredFormatter)


if __name__ == '__main__':
    unittest.main()
