import os
import json
import shutil
import tempfile
import unittest

from qrstock.core import config_manager


class TestConfigManager(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.path = os.path.join(self.tmp, "config.json")

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def test_defaults_when_missing(self):
        config = config_manager.load_config(self.path)
        self.assertEqual(config, config_manager.DEFAULT_CONFIG)
        self.assertEqual(config['cooldown_seconds'], 1.5)
        self.assertEqual(config['sync_mode'], 'none')

    def test_saved_values_override_defaults(self):
        config_manager.save_config({'cooldown_seconds': 3, 'camera_index': 2}, self.path)
        config = config_manager.load_config(self.path)
        self.assertEqual(config['camera_index'], 2)
        self.assertEqual(config_manager.get_cooldown_seconds(config), 3.0)
        self.assertEqual(config['frame_interval'], 0.1)

    def test_corrupt_file_falls_back(self):
        with open(self.path, 'w', encoding='utf-8') as f:
            f.write("{not json")
        with self.assertLogs('qrstock.core.config_manager', level='ERROR'):
            config = config_manager.load_config(self.path)
        self.assertEqual(config, config_manager.DEFAULT_CONFIG)

    def test_non_object_ignored(self):
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump([1, 2], f)
        with self.assertLogs('qrstock.core.config_manager', level='WARNING'):
            config = config_manager.load_config(self.path)
        self.assertEqual(config, config_manager.DEFAULT_CONFIG)

    def test_bad_numbers_use_defaults(self):
        self.assertEqual(config_manager.get_cooldown_seconds({'cooldown_seconds': 'soon'}), 1.5)
        self.assertEqual(config_manager.get_frame_interval({'frame_interval': -1}), 0.0)


if __name__ == '__main__':
    unittest.main()
