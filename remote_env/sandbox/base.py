"""
Base classes and interfaces for building and launching the dev sandbox.
"""

import enum
import ipaddress
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Optional

from .errors import AccountCreationError

# The remote workspace platform maps users by this fixed uid.
REQUIRED_OPERATOR_UID = 33333

LOOPBACK_ADDRESS = "127.0.0.1"


@dataclass(frozen=True)
class BaseImageReference:
    """Upstream image the build starts from, e.g. ``rust:1.66``."""

    name: str
    tag: str = "latest"

    @classmethod
    def parse(cls, reference: str) -> "BaseImageReference":
        # A colon after the last slash separates the tag; earlier ones are a registry port.
        last_slash = reference.rfind("/")
        colon = reference.rfind(":")
        if colon > last_slash:
            return cls(name=reference[:colon], tag=reference[colon + 1 :])
        return cls(name=reference)

    def __str__(self) -> str:
        return f"{self.name}:{self.tag}"


@dataclass(frozen=True)
class OperatorAccount:
    """Non-root login account created inside the image."""

    name: str
    uid: int
    groups: frozenset = field(default_factory=frozenset)
    home: str = "/home/gitpod"
    shell: str = "/bin/bash"

    def __post_init__(self):
        if self.uid != REQUIRED_OPERATOR_UID:
            raise AccountCreationError(
                f"Operator uid must be {REQUIRED_OPERATOR_UID}, got {self.uid}"
            )
        if not self.name or self.name == "root":
            raise AccountCreationError(f"Invalid operator account name: {self.name!r}")
        object.__setattr__(self, "groups", frozenset(self.groups))
        for path in (self.home, self.shell):
            if not PurePosixPath(path).is_absolute():
                raise AccountCreationError(f"Account paths must be absolute: {path}")

    @property
    def can_escalate(self) -> bool:
        """Whether the account may re-escalate through sudo."""
        return "sudo" in self.groups


@dataclass(frozen=True)
class ImageArtifact:
    """Immutable, tagged image produced by a successful build."""

    tag: str
    image_id: str
    base_image: BaseImageReference
    dockerfile: str


@dataclass(frozen=True)
class PortMapping:
    """Host port published on a loopback address only."""

    host_port: int
    container_port: int
    host_ip: str = LOOPBACK_ADDRESS

    def __post_init__(self):
        for port in (self.host_port, self.container_port):
            if not 0 < port < 65536:
                raise ValueError(f"Port out of range: {port}")
        try:
            address = ipaddress.ip_address(self.host_ip)
        except ValueError:
            raise ValueError(f"Invalid host address: {self.host_ip}") from None
        if not address.is_loopback:
            raise ValueError(f"Ports may only be published on loopback, got {self.host_ip}")

    @property
    def host_endpoint(self) -> str:
        if ":" in self.host_ip:
            return f"[{self.host_ip}]:{self.host_port}"
        return f"{self.host_ip}:{self.host_port}"

    def publish_spec(self) -> str:
        return f"{self.host_endpoint}:{self.container_port}"


@dataclass(frozen=True)
class LaunchOptions:
    """
    Everything needed to start one sandbox instance.

    ``privileged`` has no default: the operator has to opt into broad host
    kernel access explicitly.
    """

    image: str
    host_dir: str
    name: str
    port_map: PortMapping
    privileged: bool
    mount_target: str = "/home/user/ztunnel"


class InstanceState(enum.Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"
    REMOVED = "removed"


@dataclass(frozen=True)
class InstanceHandle:
    """Reference to a launched sandbox, enough for later stop/attach."""

    container_id: str
    name: str
    image: str
    endpoint: str
    mount_source: str
    mount_target: str


class ContainerRuntime(ABC):
    """Abstract base class for the platform that builds and runs images."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the runtime can be used on this system."""
        pass

    @abstractmethod
    def get_platform(self) -> str:
        """Get the name of the runtime platform."""
        pass

    @abstractmethod
    def build_image(self, tag: str, dockerfile: str, context_dir: str) -> str:
        """
        Build and tag an image from a rendered Dockerfile.

        Args:
            tag: Tag applied to the image only if the build succeeds
            dockerfile: Complete Dockerfile text
            context_dir: Build context directory

        Returns:
            The platform image id

        Raises:
            ImageBuildFailed: If the platform build exits non-zero
        """
        pass

    @abstractmethod
    def run_container(self, options: LaunchOptions) -> InstanceHandle:
        """Start a detached container, raising LaunchError subclasses on failure."""
        pass

    @abstractmethod
    def inspect_container(self, name: str) -> Optional[InstanceState]:
        """Get the state of a named container, or None if it does not exist."""
        pass

    @abstractmethod
    def remove_container(self, name: str) -> None:
        """Force-remove a container by name or id."""
        pass
