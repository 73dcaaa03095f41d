"""
Sandbox launcher: starts a built image as a privileged, detached instance.
"""

import logging
import os
import posixpath
import re
from typing import Union

from .base import (
    ContainerRuntime,
    ImageArtifact,
    InstanceHandle,
    LaunchOptions,
    PortMapping,
)
from .errors import LaunchError

logger = logging.getLogger(__name__)

DEFAULT_MOUNT_TARGET = "/home/user/ztunnel"

# Same rule the docker daemon applies to container names
_INSTANCE_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]+$")


class SandboxLauncher:
    """
    Starts exactly one sandbox instance per call, without waiting for it.

    Name and port exclusivity are left to the runtime's atomic create;
    conflicts come back as NameConflictError or LaunchError and are never
    retried here.
    """

    def __init__(self, runtime: ContainerRuntime):
        self.runtime = runtime

    def launch(
        self,
        image: Union[ImageArtifact, str],
        host_dir: str,
        name: str,
        port_map: Union[PortMapping, tuple[int, int]],
        privileged: bool,
        mount_target: str = DEFAULT_MOUNT_TARGET,
    ) -> InstanceHandle:
        """
        Launch a sandbox instance.

        Args:
            image: Built artifact or image tag
            host_dir: Host directory bound read-write into the instance
            name: Stable instance name
            port_map: (host_port, container_port), published on loopback
            privileged: Must be True; tun devices need host kernel capabilities
            mount_target: In-container path of the bound host directory

        Returns:
            Handle for later stop/attach operations

        Raises:
            NameConflictError: If the name is already in use
            LaunchError: If privilege, port or image cannot be provided
        """
        if not privileged:
            raise LaunchError(
                "The sandbox must run privileged to create and manage tun devices"
            )
        if not _INSTANCE_NAME_RE.match(name):
            raise LaunchError(f"Invalid instance name: {name!r}")

        if not posixpath.isabs(mount_target):
            raise LaunchError(f"Mount target must be an absolute path: {mount_target}")

        host_dir = os.path.abspath(host_dir)
        if not os.path.isdir(host_dir):
            raise LaunchError(f"Host directory does not exist: {host_dir}")

        if not isinstance(port_map, PortMapping):
            try:
                port_map = PortMapping(*port_map)
            except (TypeError, ValueError) as e:
                raise LaunchError(f"Invalid port mapping {port_map!r}: {e}") from e

        options = LaunchOptions(
            image=image.tag if isinstance(image, ImageArtifact) else image,
            host_dir=host_dir,
            name=name,
            port_map=port_map,
            privileged=privileged,
            mount_target=mount_target,
        )
        logger.info(
            f"Launching {options.name} from {options.image}: "
            f"{options.port_map.publish_spec()}, {host_dir} -> {mount_target}, privileged"
        )
        return self.runtime.run_container(options)
