"""
Unit Tests for Configuration and Compression Settings
=====================================================
"""

import unittest
import tempfile
import shutil
import json
import os
import sys

# Add parent directory for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))

from backup_system.compression import CompressionAlgorithm, create_compression
from backup_system.config import ToolConfig, create_default_config, load_config, sample_config
from backup_system.errors import ConfigurationError


class TestCompression(unittest.TestCase):
    """Test compression validation and option formatting."""

    def test_default_levels(self):
        self.assertEqual(create_compression('zstd').level, 3)
        self.assertEqual(create_compression('zlib').level, 3)
        self.assertEqual(create_compression('lzo').level, 1)

    def test_mount_option(self):
        self.assertEqual(create_compression('zstd', 15).mount_option(), 'compress=zstd:15')
        self.assertEqual(create_compression('ZLIB', 9).mount_option(), 'compress=zlib:9')
        self.assertEqual(create_compression('lzo').mount_option(), 'compress=lzo')
        self.assertEqual(create_compression('zstd').property_value(), 'zstd')

    def test_level_out_of_range(self):
        for algorithm, level in (('zstd', 16), ('zlib', 10), ('lzo', 2), ('zstd', 0)):
            with self.subTest(algorithm=algorithm, level=level):
                with self.assertRaises(ConfigurationError):
                    create_compression(algorithm, level)

    def test_unknown_algorithm(self):
        with self.assertRaises(ConfigurationError):
            create_compression('brotli')

    def test_algorithm_enum(self):
        self.assertEqual(create_compression('zstd').algorithm, CompressionAlgorithm.ZSTD)


class TestToolConfig(unittest.TestCase):
    """Test configuration defaults, derived paths and loading."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def _write_config(self, data) -> str:
        path = os.path.join(self.test_dir, 'config.json')
        with open(path, 'w') as f:
            json.dump(data, f)
        return path

    def test_default_paths(self):
        config = create_default_config('/srv/backup')

        self.assertEqual(config.tmp_path, '/srv/backup/tmp')
        self.assertEqual(config.hashfile_path, '/srv/backup/hashfile')
        self.assertEqual(config.backing_file_path, '/srv/backup/data.img')
        self.assertEqual(config.mount_path, '/srv/backup/mnt')
        self.assertEqual(config.backups_path, '/srv/backup/mnt/backups')
        self.assertEqual(config.journal_path, '/srv/backup/mnt/meta.json')

    def test_defaults(self):
        config = ToolConfig()

        self.assertEqual(config.data_path, '/var/lib/ydb-backup-tool')
        self.assertEqual(config.growth_multiplier, 2.0)
        self.assertEqual(config.metadata_reserve_bytes, 16 * 1024)
        self.assertFalse(config.prune_incomplete_records)
        config.validate()

    def test_validate_rejects_bad_values(self):
        cases = {
            'data_path': 'relative/path',
            'growth_multiplier': 0.9,
            'metadata_reserve_bytes': -1,
            'dedup_block_size': 0,
            'driver': 'mysql',
            'schedule_backup_type': 'differential'
        }
        for attr, value in cases.items():
            with self.subTest(attr=attr):
                config = ToolConfig()
                setattr(config, attr, value)
                with self.assertRaises(ConfigurationError):
                    config.validate()

    def test_load_config(self):
        path = self._write_config({
            'storage': {'data_path': '/srv/backup'},
            'capacity': {'growth_multiplier': 1.5, 'check_host_space': False},
            'compression': {'algorithm': 'zstd', 'level': 7},
            'deduplication': {'block_size': 65536},
            'database': {'driver': 'postgres', 'dump_options': {'jobs': 2}},
            'postgres': {'host': 'db', 'database': 'inventory'},
            'journal': {'prune_incomplete_records': True},
            'schedule': {'daily_at': '03:30'}
        })

        config = load_config(path)

        self.assertEqual(config.data_path, '/srv/backup')
        self.assertEqual(config.growth_multiplier, 1.5)
        self.assertFalse(config.check_host_space)
        self.assertEqual(config.compression.mount_option(), 'compress=zstd:7')
        self.assertEqual(config.dedup_block_size, 65536)
        self.assertEqual(config.driver, 'postgres')
        self.assertEqual(config.connection_settings['database'], 'inventory')
        self.assertEqual(config.dump_options, {'jobs': 2})
        self.assertTrue(config.prune_incomplete_records)
        self.assertEqual(config.schedule_daily_at, '03:30')

    def test_load_missing_file(self):
        with self.assertRaises(ConfigurationError):
            load_config(os.path.join(self.test_dir, 'missing.json'))

    def test_load_invalid_json(self):
        path = os.path.join(self.test_dir, 'config.json')
        with open(path, 'w') as f:
            f.write('{')

        with self.assertRaises(ConfigurationError):
            load_config(path)

    def test_load_invalid_value(self):
        path = self._write_config({'capacity': {'growth_multiplier': 0.5}})

        with self.assertRaises(ConfigurationError):
            load_config(path)

    def test_sample_config_loads(self):
        path = self._write_config(sample_config())

        config = load_config(path)

        self.assertEqual(config.driver, 'ydb')
        self.assertEqual(config.ydb['endpoint'], 'grpc://localhost:2136')
        self.assertEqual(config.compression.mount_option(), 'compress=zstd:3')


if __name__ == '__main__':
    unittest.main()
