import unittest
import sys
import os
import tempfile
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import yaml

from config import Config, get_default_config
from config_manager import ConfigManager, dataclass_to_dict, dict_to_dataclass
from errors import ConfigurationError


class TestConfigConversion(unittest.TestCase):
    def test_round_trip(self):
        cfg = get_default_config()
        data = yaml.safe_load(yaml.dump(dataclass_to_dict(cfg), Dumper=yaml.SafeDumper))
        self.assertEqual(dict_to_dataclass(Config, data), cfg)

    def test_matrices_become_tuples(self):
        cfg = dict_to_dataclass(Config, {"kalman": {"process_noise": [[50.0, 0.0], [0.0, 5.0]]}})
        self.assertEqual(cfg.kalman.process_noise, ((50.0, 0.0), (0.0, 5.0)))


class TestConfigManager(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "config.yaml")

    def tearDown(self):
        self.tmp.cleanup()

    def test_creates_default_file(self):
        manager = ConfigManager(self.path)
        self.assertTrue(os.path.exists(self.path))
        self.assertEqual(manager.get_active_config(), Config())

    def test_profile_overrides_merge_with_defaults(self):
        manager = ConfigManager(self.path)
        manager.save_profile("volatile", {"kalman": {"process_noise": [[400.0, 0.0], [0.0, 40.0]]},
                                          "anomaly": {"severe_sigma": 5.0}})
        manager.set_active_profile("volatile")
        manager.save()

        cfg = ConfigManager(self.path).get_active_config()
        self.assertEqual(cfg.kalman.process_noise, ((400.0, 0.0), (0.0, 40.0)))
        self.assertEqual(cfg.kalman.measurement_noise, ((1000.0,),))
        self.assertEqual(cfg.anomaly.severe_sigma, 5.0)
        self.assertEqual(cfg.anomaly.outlier_sigma, 2.5)

    def test_invalid_profile_is_rejected(self):
        manager = ConfigManager(self.path)
        with self.assertRaises(ConfigurationError):
            manager.save_profile("broken", {"kalman": {"measurement_noise": [[1.0, 2.0]]}})
        self.assertNotIn("broken", manager.get_profile_names())

    def test_unknown_profile(self):
        manager = ConfigManager(self.path)
        self.assertIsNone(manager.get_profile_config("missing"))
        manager.set_active_profile("missing")
        self.assertEqual(manager.active_profile_name, "default")

    def test_unversioned_file_falls_back_to_defaults(self):
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("profiles: {}\n")
        manager = ConfigManager(self.path)
        self.assertEqual(manager.get_profile_names(), ["default"])


if __name__ == '__main__':
    unittest.main()
