"""
Privileged development sandbox for tunneling software.

Provides:
- ImageBuilder: ordered provisioning steps rendered into one tagged image
- SandboxLauncher: detached, privileged instance with a bound source tree
  and a loopback-only published port
- Container runtimes: docker CLI, plus a dry-run recorder
"""

from .base import (
    REQUIRED_OPERATOR_UID,
    BaseImageReference,
    ImageArtifact,
    InstanceHandle,
    InstanceState,
    OperatorAccount,
    PortMapping,
)
from .errors import (
    AccountCreationError,
    BuildError,
    CopyError,
    LaunchError,
    NameConflictError,
    PackageResolutionError,
)
from .image_builder import ImageBuilder
from .launcher import SandboxLauncher
from .profiles import BuildProfile, get_profile
from .runtime import DryRunRuntime, get_container_runtime

__all__ = [
    "REQUIRED_OPERATOR_UID",
    "AccountCreationError",
    "BaseImageReference",
    "BuildError",
    "BuildProfile",
    "CopyError",
    "DryRunRuntime",
    "ImageArtifact",
    "ImageBuilder",
    "InstanceHandle",
    "InstanceState",
    "LaunchError",
    "NameConflictError",
    "OperatorAccount",
    "PackageResolutionError",
    "PortMapping",
    "SandboxLauncher",
    "get_container_runtime",
    "get_profile",
]
