"""
Error taxonomy for image provisioning and sandbox launch.
"""

from typing import Optional


class ProvisioningError(Exception):
    """Base class for failures of a single provisioning step."""


class PackageResolutionError(ProvisioningError):
    """A requested package is unknown or unavailable for the base image."""

    def __init__(self, message: str, packages: Optional[list[str]] = None):
        super().__init__(message)
        self.packages = packages or []


class AccountCreationError(ProvisioningError):
    """The operator account violates its identity constraints."""


class CopyError(ProvisioningError):
    """A directory copy could not be performed."""


class BuildError(Exception):
    """
    Terminal failure of an image build.

    Wraps the first step failure encountered. A failed build is never
    resumed; the whole step sequence has to be replayed.
    """

    def __init__(
        self,
        message: str,
        step_index: Optional[int] = None,
        step_description: Optional[str] = None,
        output: str = "",
    ):
        super().__init__(message)
        self.step_index = step_index
        self.step_description = step_description
        self.output = output


class ProvisioningOrderError(BuildError):
    """A step was declared out of the required order."""


class ImageBuildFailed(Exception):
    """Raised by a container runtime when the platform build exits non-zero."""

    def __init__(
        self,
        exit_code: int,
        output: str,
        failed_command: Optional[str] = None,
        step_exit_code: Optional[int] = None,
    ):
        super().__init__(f"image build failed with exit code {exit_code}")
        self.exit_code = exit_code
        self.output = output
        self.failed_command = failed_command
        self.step_exit_code = step_exit_code


class LaunchError(Exception):
    """A sandbox instance could not be started."""

    def __init__(self, message: str, exit_code: int = 1, output: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class NameConflictError(LaunchError):
    """The requested instance name is already taken."""


class PortAllocationError(LaunchError):
    """The requested host port is already bound."""


class ImageNotFoundError(LaunchError):
    """The image reference does not exist locally."""
