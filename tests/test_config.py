"""Tests for the persistent configuration."""

import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from remote_env import config


class TestConfig(unittest.TestCase):
    """Test cases for remote_env.config."""

    def setUp(self):
        """Point the config module at a temporary directory."""
        self.test_config_dir = tempfile.mkdtemp(prefix="remote_env_test_")
        config_file = os.path.join(self.test_config_dir, "remote_env.cfg")
        self.patchers = [
            patch.object(config, "CONFIG_DIR", self.test_config_dir),
            patch.object(config, "CONFIG_FILE", config_file),
        ]
        for patcher in self.patchers:
            patcher.start()

    def tearDown(self):
        for patcher in self.patchers:
            patcher.stop()
        shutil.rmtree(self.test_config_dir, ignore_errors=True)

    def test_defaults_match_dev_sandbox(self):
        self.assertEqual(config.get_image_tag(), "ztunnel/remote-env:0.1")
        self.assertEqual(config.get_container_name(), "ztunnel-dev")
        self.assertEqual(config.get_host_port(), 2222)
        self.assertEqual(config.get_container_port(), 22)
        self.assertEqual(config.get_bind_address(), "127.0.0.1")
        self.assertEqual(config.get_mount_target(), "/home/user/ztunnel")
        self.assertEqual(config.get_build_profile(), "ztunnel")
        self.assertIsNone(config.get_base_image())
        self.assertIsNone(config.get_build_timeout())

    def test_set_value_persists(self):
        config.set_config_value("host_port", "2223")
        config.set_config_value("image_tag", "ztunnel/remote-env:dev")

        self.assertEqual(config.get_host_port(), 2223)
        self.assertEqual(config.get_image_tag(), "ztunnel/remote-env:dev")
        self.assertTrue(os.path.isfile(config.CONFIG_FILE))

    def test_invalid_port_raises(self):
        config.set_config_value("host_port", "ssh")
        with self.assertRaises(ValueError):
            config.get_host_port()

    def test_build_timeout(self):
        config.set_config_value("build_timeout", "900")
        self.assertEqual(config.get_build_timeout(), 900)
        config.set_config_value("build_timeout", "0")
        self.assertIsNone(config.get_build_timeout())
        config.set_config_value("build_timeout", "soon")
        self.assertIsNone(config.get_build_timeout())

    def test_privileged_is_not_configurable(self):
        with self.assertRaises(ValueError):
            config.set_config_value("privileged", "false")

    def test_config_keys_include_defaults_and_custom(self):
        config.set_config_value("base_image", "rust:1.70")
        config.set_config_value("custom", "1")
        keys = config.get_config_keys()
        self.assertIn("image_tag", keys)
        self.assertIn("build_timeout", keys)
        self.assertIn("custom", keys)
        self.assertEqual(config.get_base_image(), "rust:1.70")


if __name__ == "__main__":
    unittest.main()
