"""
Container runtime backed by the docker CLI.
"""

import json
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from remote_env.tools.command_runner import CommandOutput, run_command

from .base import ContainerRuntime, InstanceHandle, InstanceState, LaunchOptions
from .errors import (
    ImageBuildFailed,
    ImageNotFoundError,
    LaunchError,
    NameConflictError,
    PortAllocationError,
)

logger = logging.getLogger(__name__)

# BuildKit quotes the failing argv with Go's %q.
_BUILDKIT_FAILURE_RE = re.compile(
    r'process "((?:[^"\\]|\\.)*)" did not complete successfully: exit code: (\d+)'
)
_LEGACY_FAILURE_RE = re.compile(
    r"The command '(.*)' returned a non-zero code: (\d+)", re.DOTALL
)
_SHELL_PREFIX = "/bin/sh -c "

_NAME_CONFLICT_MARKERS = ("is already in use by container", "Conflict. The container name")
_PORT_CONFLICT_MARKERS = ("port is already allocated", "address already in use")
_MISSING_IMAGE_MARKERS = (
    "No such image",
    "Unable to find image",
    "pull access denied",
    "manifest unknown",
)
_MISSING_CONTAINER_MARKERS = ("No such container", "No such object")

_STATE_MAP = {
    "created": InstanceState.CREATED,
    "running": InstanceState.RUNNING,
    "restarting": InstanceState.RUNNING,
    "paused": InstanceState.RUNNING,
    "exited": InstanceState.STOPPED,
    "dead": InstanceState.STOPPED,
    "removing": InstanceState.REMOVED,
}


def _unquote_go(text: str) -> str:
    try:
        return json.loads(f'"{text}"')
    except ValueError:
        return text


def parse_build_failure(output: str) -> tuple[Optional[str], Optional[int]]:
    """
    Find the failing RUN command and its exit code in docker build output.

    Returns:
        Tuple of (shell command, exit code), (None, None) if not found
    """
    match = _BUILDKIT_FAILURE_RE.search(output)
    if match:
        command = _unquote_go(match.group(1))
    else:
        match = _LEGACY_FAILURE_RE.search(output)
        if not match:
            return None, None
        command = match.group(1)
    if command.startswith(_SHELL_PREFIX):
        command = command[len(_SHELL_PREFIX) :]
    return command, int(match.group(2))


def _mount_spec(source: str, target: str) -> str:
    fields = []
    for key, value in (("source", source), ("target", target)):
        field = f"{key}={value}"
        # --mount is parsed as CSV
        if "," in field or '"' in field:
            field = '"' + field.replace('"', '""') + '"'
        fields.append(field)
    return ",".join(["type=bind"] + fields)


def build_run_args(
    options: LaunchOptions, docker_binary: str = "docker", cidfile: Optional[str] = None
) -> list[str]:
    """Translate launch options into a detached `docker run` invocation."""
    args = [docker_binary, "run", "--detach"]
    if options.privileged:
        args.append("--privileged")
    args.extend([
        "--publish", options.port_map.publish_spec(),
        "--name", options.name,
        "--mount", _mount_spec(options.host_dir, options.mount_target),
        "--pull", "never",
    ])
    if cidfile:
        args.extend(["--cidfile", cidfile])
    args.append(options.image)
    return args


def classify_run_failure(result: CommandOutput, options: LaunchOptions) -> LaunchError:
    """Map a failed `docker run` onto the launch error taxonomy."""
    output = result.combined_output
    exit_code = result.exit_code if result.exit_code is not None else 1
    if any(marker in output for marker in _NAME_CONFLICT_MARKERS):
        return NameConflictError(
            f"Instance name '{options.name}' is already in use", exit_code, output
        )
    if any(marker in output for marker in _PORT_CONFLICT_MARKERS):
        return PortAllocationError(
            f"Host port {options.port_map.host_endpoint} is already bound", exit_code, output
        )
    if any(marker in output for marker in _MISSING_IMAGE_MARKERS):
        return ImageNotFoundError(
            f"Image '{options.image}' does not exist locally; build it first",
            exit_code,
            output,
        )
    if result.timeout:
        return LaunchError(f"Launching '{options.name}' timed out", exit_code, output)
    detail = output.strip().splitlines()[-1] if output.strip() else result.error
    return LaunchError(f"Failed to launch '{options.name}': {detail}", exit_code, output)


class DockerCliRuntime(ContainerRuntime):
    """Builds and runs images through the docker command line."""

    def __init__(self, docker_binary: str = "docker", build_timeout: Optional[float] = None):
        self.docker_binary = docker_binary
        self.build_timeout = build_timeout

    def is_available(self) -> bool:
        """Check if the docker CLI is installed."""
        return shutil.which(self.docker_binary) is not None

    def get_platform(self) -> str:
        return "docker"

    def build_image(self, tag: str, dockerfile: str, context_dir: str) -> str:
        with tempfile.TemporaryDirectory(prefix="remote-env-iid-") as scratch:
            iidfile = os.path.join(scratch, "iid")
            args = [
                self.docker_binary, "build",
                "--tag", tag,
                "--rm", "--force-rm",
                "--progress=plain",
                "--iidfile", iidfile,
                "--file", "-",
                context_dir,
            ]
            env = {**os.environ, "DOCKER_BUILDKIT": "1"}
            result = run_command(args, input_text=dockerfile, env=env, timeout=self.build_timeout)

            if not result.success:
                output = result.combined_output
                failed_command, step_exit_code = parse_build_failure(output)
                logger.error(f"docker build of {tag} exited with {result.exit_code}")
                raise ImageBuildFailed(
                    exit_code=result.exit_code if result.exit_code is not None else 1,
                    output=output or result.error or "",
                    failed_command=failed_command,
                    step_exit_code=step_exit_code,
                )

            image_id = Path(iidfile).read_text().strip() if os.path.exists(iidfile) else ""
        return image_id or tag

    def run_container(self, options: LaunchOptions) -> InstanceHandle:
        with tempfile.TemporaryDirectory(prefix="remote-env-cid-") as scratch:
            cidfile = os.path.join(scratch, "cid")
            result = run_command(build_run_args(options, self.docker_binary, cidfile))
            if result.success:
                container_id = (result.stdout or "").strip()
                logger.info(f"Started {options.name} ({container_id[:12]})")
                return InstanceHandle(
                    container_id=container_id,
                    name=options.name,
                    image=options.image,
                    endpoint=options.port_map.host_endpoint,
                    mount_source=options.host_dir,
                    mount_target=options.mount_target,
                )

            error = classify_run_failure(result, options)
            logger.error(f"docker run for {options.name} failed: {error}")
            # docker may create the container before failing to start it
            if not isinstance(error, NameConflictError) and os.path.exists(cidfile):
                created_id = Path(cidfile).read_text().strip()
                if created_id:
                    logger.info(f"Removing half-started container {created_id[:12]}")
                    try:
                        self.remove_container(created_id)
                    except RuntimeError as e:
                        logger.warning(f"Could not remove {created_id[:12]}: {e}")
            raise error

    def inspect_container(self, name: str) -> Optional[InstanceState]:
        result = run_command([
            self.docker_binary, "container", "inspect", "--format", "{{.State.Status}}", name,
        ])
        if not result.success:
            if any(marker in result.combined_output for marker in _MISSING_CONTAINER_MARKERS):
                return None
            raise RuntimeError(f"docker inspect {name} failed: {result.combined_output.strip()}")
        status = (result.stdout or "").strip()
        return _STATE_MAP.get(status, InstanceState.STOPPED)

    def remove_container(self, name: str) -> None:
        result = run_command([self.docker_binary, "rm", "--force", name])
        if not result.success and not any(
            marker in result.combined_output for marker in _MISSING_CONTAINER_MARKERS
        ):
            raise RuntimeError(f"docker rm {name} failed: {result.combined_output.strip()}")
