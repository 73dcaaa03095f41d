"""
Dry-run runtime and the factory that picks a container runtime.
"""

import hashlib
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from .base import ContainerRuntime, InstanceHandle, InstanceState, LaunchOptions
from .docker_runtime import DockerCliRuntime, build_run_args
from .errors import ImageNotFoundError, NameConflictError, PortAllocationError

logger = logging.getLogger(__name__)

# docker's own exit status for daemon-side failures
DOCKER_DAEMON_ERROR_EXIT = 125


@dataclass
class _Container:
    container_id: str
    image: str
    endpoint: str
    state: InstanceState


class DryRunRuntime(ContainerRuntime):
    """
    Records the docker commands it would run instead of running them.

    Keeps name and port exclusivity in memory the way the docker daemon
    does, so conflicts surface exactly as they would for real.
    """

    def __init__(self, strict_images: bool = False, docker_binary: str = "docker"):
        """
        Initialize the dry-run runtime.

        Args:
            strict_images: Only launch images built through this runtime
            docker_binary: Program name shown in recorded commands
        """
        self.strict_images = strict_images
        self.docker_binary = docker_binary
        self.commands: list[list[str]] = []
        self.images: dict[str, str] = {}
        self._containers: dict[str, _Container] = {}

    def is_available(self) -> bool:
        return True

    def get_platform(self) -> str:
        return "dry-run"

    def build_image(self, tag: str, dockerfile: str, context_dir: str) -> str:
        self.commands.append([
            self.docker_binary, "build", "--tag", tag, "--rm", "--force-rm",
            "--progress=plain", "--file", "-", context_dir,
        ])
        image_id = "sha256:" + hashlib.sha256(dockerfile.encode("utf-8")).hexdigest()
        self.images[tag] = image_id
        logger.info(f"[dry-run] would build {tag} ({image_id})")
        return image_id

    def run_container(self, options: LaunchOptions) -> InstanceHandle:
        self.commands.append(build_run_args(options, self.docker_binary))

        if options.name in self._containers:
            raise NameConflictError(
                f"Instance name '{options.name}' is already in use",
                DOCKER_DAEMON_ERROR_EXIT,
            )
        endpoint = options.port_map.host_endpoint
        for container in self._containers.values():
            if container.state == InstanceState.RUNNING and container.endpoint == endpoint:
                raise PortAllocationError(
                    f"Host port {endpoint} is already bound", DOCKER_DAEMON_ERROR_EXIT
                )
        if self.strict_images and options.image not in self.images:
            raise ImageNotFoundError(
                f"Image '{options.image}' does not exist locally; build it first",
                DOCKER_DAEMON_ERROR_EXIT,
            )

        container_id = uuid.uuid4().hex + uuid.uuid4().hex
        self._containers[options.name] = _Container(
            container_id=container_id,
            image=options.image,
            endpoint=endpoint,
            state=InstanceState.RUNNING,
        )
        logger.info(f"[dry-run] would start {options.name} on {endpoint}")
        return InstanceHandle(
            container_id=container_id,
            name=options.name,
            image=options.image,
            endpoint=endpoint,
            mount_source=options.host_dir,
            mount_target=options.mount_target,
        )

    def inspect_container(self, name: str) -> Optional[InstanceState]:
        container = self._containers.get(name)
        return container.state if container else None

    def stop_container(self, name: str) -> None:
        """Mark a container stopped, releasing its port but not its name."""
        self.commands.append([self.docker_binary, "stop", name])
        if name in self._containers:
            self._containers[name].state = InstanceState.STOPPED

    def remove_container(self, name: str) -> None:
        self.commands.append([self.docker_binary, "rm", "--force", name])
        for key, container in list(self._containers.items()):
            if name in (key, container.container_id):
                del self._containers[key]


def get_container_runtime(
    dry_run: bool = False,
    docker_binary: str = "docker",
    build_timeout: Optional[float] = None,
) -> ContainerRuntime:
    """
    Get the container runtime to build and launch with.

    Args:
        dry_run: Record commands instead of executing them
        docker_binary: docker executable to drive
        build_timeout: Seconds allowed for an image build (None for no limit)

    Returns:
        ContainerRuntime instance
    """
    if dry_run:
        return DryRunRuntime(docker_binary=docker_binary)
    return DockerCliRuntime(docker_binary=docker_binary, build_timeout=build_timeout)
