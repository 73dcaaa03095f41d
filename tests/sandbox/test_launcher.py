"""Tests for the sandbox launcher."""

import os
import shutil
import tempfile
import unittest
from unittest.mock import MagicMock

from remote_env.sandbox.base import (
    BaseImageReference,
    ImageArtifact,
    InstanceState,
    LaunchOptions,
    PortMapping,
)
from remote_env.sandbox.errors import (
    ImageNotFoundError,
    LaunchError,
    NameConflictError,
    PortAllocationError,
)
from remote_env.sandbox.launcher import DEFAULT_MOUNT_TARGET, SandboxLauncher
from remote_env.sandbox.runtime import DryRunRuntime


class TestPortMapping(unittest.TestCase):
    """Test cases for PortMapping."""

    def test_publish_spec_defaults_to_loopback(self):
        self.assertEqual(PortMapping(2222, 22).publish_spec(), "127.0.0.1:2222:22")

    def test_ipv6_loopback(self):
        self.assertEqual(PortMapping(2222, 22, "::1").publish_spec(), "[::1]:2222:22")

    def test_non_loopback_rejected(self):
        for address in ("0.0.0.0", "192.168.1.10", "not-an-ip"):
            with self.assertRaises(ValueError):
                PortMapping(2222, 22, address)

    def test_port_range(self):
        with self.assertRaises(ValueError):
            PortMapping(0, 22)
        with self.assertRaises(ValueError):
            PortMapping(2222, 70000)


class TestSandboxLauncher(unittest.TestCase):
    """Test cases for SandboxLauncher."""

    def setUp(self):
        self.host_dir = tempfile.mkdtemp(prefix="remote_env_src_")
        self.runtime = DryRunRuntime()
        self.launcher = SandboxLauncher(self.runtime)

    def tearDown(self):
        shutil.rmtree(self.host_dir, ignore_errors=True)

    def _launch(self, name="ztunnel-dev", port_map=(2222, 22), image="ztunnel/remote-env:0.1"):
        return self.launcher.launch(image, self.host_dir, name, port_map, privileged=True)

    def test_launch_returns_handle(self):
        handle = self._launch()

        self.assertEqual(handle.name, "ztunnel-dev")
        self.assertEqual(handle.image, "ztunnel/remote-env:0.1")
        self.assertEqual(handle.endpoint, "127.0.0.1:2222")
        self.assertEqual(handle.mount_source, os.path.abspath(self.host_dir))
        self.assertEqual(handle.mount_target, DEFAULT_MOUNT_TARGET)
        self.assertEqual(self.runtime.inspect_container("ztunnel-dev"), InstanceState.RUNNING)

    def test_launch_is_detached_and_privileged(self):
        self._launch()
        argv = self.runtime.commands[-1]

        self.assertEqual(argv[:3], ["docker", "run", "--detach"])
        self.assertIn("--privileged", argv)
        self.assertIn("127.0.0.1:2222:22", argv)
        self.assertIn(
            f"type=bind,source={os.path.abspath(self.host_dir)},target=/home/user/ztunnel", argv
        )

    def test_launch_accepts_image_artifact(self):
        artifact = ImageArtifact(
            tag="ztunnel/remote-env:0.1",
            image_id="sha256:abc",
            base_image=BaseImageReference("rust", "1.66"),
            dockerfile="FROM rust:1.66\n",
        )
        handle = self.launcher.launch(artifact, self.host_dir, "ztunnel-dev", (2222, 22), True)
        self.assertEqual(handle.image, "ztunnel/remote-env:0.1")

    def test_unprivileged_launch_rejected(self):
        with self.assertRaises(LaunchError):
            self.launcher.launch(
                "ztunnel/remote-env:0.1", self.host_dir, "ztunnel-dev", (2222, 22), privileged=False
            )
        self.assertEqual(self.runtime.commands, [])

    def test_missing_host_dir_rejected(self):
        with self.assertRaises(LaunchError):
            self.launcher.launch(
                "ztunnel/remote-env:0.1",
                os.path.join(self.host_dir, "missing"),
                "ztunnel-dev",
                (2222, 22),
                privileged=True,
            )

    def test_invalid_name_rejected(self):
        with self.assertRaises(LaunchError):
            self._launch(name="-bad name")

    def test_invalid_port_map_rejected(self):
        with self.assertRaises(LaunchError):
            self._launch(port_map=(2222, 99999))

    def test_same_name_conflicts_while_first_exists(self):
        self._launch()
        with self.assertRaises(NameConflictError):
            self._launch(port_map=(2223, 22))
        # A failed launch leaves the original instance alone.
        self.assertEqual(self.runtime.inspect_container("ztunnel-dev"), InstanceState.RUNNING)

    def test_same_name_succeeds_after_removal(self):
        self._launch()
        self.runtime.remove_container("ztunnel-dev")
        handle = self._launch()
        self.assertEqual(handle.name, "ztunnel-dev")

    def test_port_in_use_by_running_instance(self):
        self._launch(name="first")
        with self.assertRaises(LaunchError) as ctx:
            self._launch(name="second")
        self.assertIsInstance(ctx.exception, PortAllocationError)
        self.assertIsNone(self.runtime.inspect_container("second"))

    def test_free_port_succeeds(self):
        self._launch(name="first")
        handle = self._launch(name="second", port_map=(2223, 22))
        self.assertEqual(handle.endpoint, "127.0.0.1:2223")

    def test_port_released_by_stopped_instance(self):
        self._launch(name="first")
        self.runtime.stop_container("first")
        self._launch(name="second")
        self.assertEqual(self.runtime.inspect_container("first"), InstanceState.STOPPED)

    def test_strict_runtime_requires_built_image(self):
        launcher = SandboxLauncher(DryRunRuntime(strict_images=True))
        with self.assertRaises(ImageNotFoundError) as ctx:
            launcher.launch("missing:1", self.host_dir, "ztunnel-dev", (2222, 22), True)
        self.assertEqual(ctx.exception.exit_code, 125)

    def test_runtime_errors_propagate_unchanged(self):
        runtime = MagicMock()
        runtime.run_container.side_effect = LaunchError("cannot grant privileges", 126)
        launcher = SandboxLauncher(runtime)

        with self.assertRaises(LaunchError) as ctx:
            launcher.launch("img:1", self.host_dir, "ztunnel-dev", (2222, 22), True)

        self.assertEqual(ctx.exception.exit_code, 126)
        options = runtime.run_container.call_args[0][0]
        self.assertIsInstance(options, LaunchOptions)
        self.assertTrue(options.privileged)
        self.assertEqual(runtime.run_container.call_count, 1)


if __name__ == "__main__":
    unittest.main()
