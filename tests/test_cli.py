"""Tests for the remote-env command line."""

import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from remote_env import config
from remote_env.main import build_parser, main
from remote_env.sandbox.errors import NameConflictError

COMMANDS = "remote_env.command_line.remote_env_commands"


class TestCommandLine(unittest.TestCase):
    """Test cases for the build/render/run/status/config commands."""

    def setUp(self):
        self.workdir = tempfile.mkdtemp(prefix="remote_env_cli_")
        self.original_cwd = os.getcwd()
        os.chdir(self.workdir)
        config_file = os.path.join(self.workdir, "remote_env.cfg")
        self.patchers = [
            patch.object(config, "CONFIG_DIR", self.workdir),
            patch.object(config, "CONFIG_FILE", config_file),
        ]
        for patcher in self.patchers:
            patcher.start()

    def tearDown(self):
        for patcher in self.patchers:
            patcher.stop()
        os.chdir(self.original_cwd)
        shutil.rmtree(self.workdir, ignore_errors=True)

    def test_run_takes_no_arguments(self):
        args = build_parser().parse_args(["run"])
        self.assertEqual(args.command, "run")
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["run", "--name", "other"])

    def test_render_to_file(self):
        output = os.path.join(self.workdir, "Dockerfile")
        self.assertEqual(main(["render", "--output", output]), 0)

        with open(output) as f:
            dockerfile = f.read()
        self.assertTrue(dockerfile.startswith("FROM rust:1.66\n"))
        self.assertIn("USER gitpod", dockerfile)

    def test_render_to_missing_directory_fails_cleanly(self):
        output = os.path.join(self.workdir, "missing", "Dockerfile")
        with patch(f"{COMMANDS}.emit_error") as mock_error:
            self.assertEqual(main(["render", "--output", output]), 1)
        self.assertIn("Could not write", mock_error.call_args[0][0])
        self.assertFalse(os.path.exists(output))

    def test_run_mounts_symlinked_directory_as_given(self):
        real = os.path.join(self.workdir, "real")
        link = os.path.join(self.workdir, "checkout")
        os.mkdir(real)
        os.symlink(real, link)
        os.chdir(link)

        with patch.dict(os.environ, {"PWD": link}):
            with patch(f"{COMMANDS}.emit_code") as mock_code:
                self.assertEqual(main(["--dry-run", "run"]), 0)

        printed = mock_code.call_args_list[-1][0][0]
        self.assertIn(f"source={link},target=/home/user/ztunnel", printed)

    def test_run_ignores_stale_pwd(self):
        other = os.path.join(self.workdir, "other")
        os.mkdir(other)

        with patch.dict(os.environ, {"PWD": other}):
            with patch(f"{COMMANDS}.emit_code") as mock_code:
                self.assertEqual(main(["--dry-run", "run"]), 0)

        printed = mock_code.call_args_list[-1][0][0]
        self.assertIn(f"source={os.getcwd()},target=/home/user/ztunnel", printed)

    def test_render_unknown_profile(self):
        self.assertEqual(main(["render", "--profile", "nope"]), 2)

    def test_dry_run_build(self):
        with patch(f"{COMMANDS}.emit_code") as mock_code:
            self.assertEqual(main(["--dry-run", "build"]), 0)
        printed = " ".join(call[0][0] for call in mock_code.call_args_list)
        self.assertIn("docker build --tag ztunnel/remote-env:0.1", printed)

    def test_dry_run_run_uses_fixed_parameters(self):
        with patch(f"{COMMANDS}.emit_code") as mock_code:
            self.assertEqual(main(["--dry-run", "run"]), 0)

        printed = mock_code.call_args_list[-1][0][0]
        self.assertIn("--privileged", printed)
        self.assertIn("127.0.0.1:2222:22", printed)
        self.assertIn("--name ztunnel-dev", printed)
        self.assertIn(f"source={os.getcwd()},target=/home/user/ztunnel", printed)
        self.assertTrue(printed.endswith("ztunnel/remote-env:0.1"))

    @patch("remote_env.sandbox.docker_runtime.shutil.which", return_value=None)
    def test_run_without_docker(self, _mock_which):
        self.assertEqual(main(["run"]), 127)

    @patch("remote_env.sandbox.docker_runtime.DockerCliRuntime.run_container")
    @patch("remote_env.sandbox.docker_runtime.DockerCliRuntime.is_available", return_value=True)
    def test_run_propagates_launch_exit_code(self, _mock_available, mock_run):
        mock_run.side_effect = NameConflictError("Instance name 'ztunnel-dev' is already in use", 125)
        self.assertEqual(main(["run"]), 125)

    def test_run_with_bad_port_config(self):
        config.set_config_value("host_port", "ssh")
        self.assertEqual(main(["--dry-run", "run"]), 2)

    def test_dry_run_status(self):
        self.assertEqual(main(["--dry-run", "status"]), 1)

    def test_config_set_and_get(self):
        self.assertEqual(main(["config", "host_port", "2223"]), 0)
        self.assertEqual(config.get_host_port(), 2223)
        with patch(f"{COMMANDS}.emit_info") as mock_info:
            self.assertEqual(main(["config", "host_port"]), 0)
        mock_info.assert_called_once_with("2223")

    def test_config_refuses_privileged(self):
        self.assertEqual(main(["config", "privileged", "false"]), 2)


if __name__ == "__main__":
    unittest.main()
