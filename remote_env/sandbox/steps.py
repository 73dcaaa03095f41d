"""
Provisioning steps and their rendering to Dockerfile directives.
"""

import re
import shlex
from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from typing import Iterable, Optional

from .base import OperatorAccount
from .errors import (
    AccountCreationError,
    CopyError,
    PackageResolutionError,
    ProvisioningError,
)

# Debian policy: lowercase alphanumerics plus "+-.", at least two chars.
_PACKAGE_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9+.\-]+$")

_UNLOCATABLE_PACKAGE_RE = re.compile(r"E: Unable to locate package (\S+)")
_NO_CANDIDATE_RE = re.compile(r"E: Package '([^']+)' has no installation candidate")

# apt-get exits 100 on any resolution or download failure
APT_FAILURE_EXIT = 100

# useradd(8) exit statuses
USERADD_BAD_GROUP_EXIT = 6
USERADD_UID_IN_USE_EXIT = 4
USERADD_NAME_IN_USE_EXIT = 9

# sysexits.h EX_NOINPUT
MISSING_SOURCE_EXIT = 66

_PACKAGE_CACHE_PATHS = ("/var/cache/apt/*", "/var/lib/apt/lists/*", "/tmp/*", "/var/tmp/*")


def _sudo(command: str, escalate: bool) -> str:
    return f"sudo {command}" if escalate else command


def _escape_env_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _require_absolute(path: str, error_cls) -> str:
    if not PurePosixPath(path).is_absolute():
        raise error_cls(f"Path must be absolute: {path}")
    return str(PurePosixPath(path))


class ProvisioningStep(ABC):
    """One ordered unit of image construction."""

    # Whether the step mutates system state owned by root.
    requires_root = False

    @abstractmethod
    def describe(self) -> str:
        """Short human readable description of the step."""
        pass

    @abstractmethod
    def render(self, escalate: bool = False) -> list[str]:
        """
        Render the step to Dockerfile directives.

        Args:
            escalate: Prefix privileged commands with sudo because the
                build no longer runs as root

        Returns:
            List of directives, in order
        """
        pass

    def run_commands(self, escalate: bool = False) -> list[str]:
        """Shell commands of the RUN directives this step renders."""
        return [
            directive[len("RUN ") :]
            for directive in self.render(escalate)
            if directive.startswith("RUN ")
        ]

    def classify_failure(self, exit_code: Optional[int], output: str) -> Optional[ProvisioningError]:
        """Map a failed RUN command of this step to a specific error, if known."""
        return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.describe()}>"


class PackageInstallStep(ProvisioningStep):
    """Install system packages and clear the package cache in the same layer."""

    requires_root = True

    def __init__(self, packages: Iterable[str]):
        names = sorted(set(packages))
        if not names:
            raise PackageResolutionError("At least one package must be requested")
        invalid = [name for name in names if not _PACKAGE_NAME_RE.match(name)]
        if invalid:
            raise PackageResolutionError(
                f"Invalid package name(s): {', '.join(invalid)}", packages=invalid
            )
        self.packages = tuple(names)

    def describe(self) -> str:
        return f"install packages {', '.join(self.packages)}"

    def render(self, escalate: bool = False) -> list[str]:
        packages = " ".join(self.packages)
        # The cache cleanup has to live in the same RUN, or the index stays in the layer.
        command = " && ".join([
            _sudo("apt-get update", escalate),
            _sudo(
                f"DEBIAN_FRONTEND=noninteractive apt-get install -yq "
                f"--no-install-recommends {packages}",
                escalate,
            ),
            _sudo("apt-get clean", escalate),
            _sudo(f"rm -rf {' '.join(_PACKAGE_CACHE_PATHS)}", escalate),
        ])
        return [f"RUN {command}"]

    def classify_failure(self, exit_code, output):
        missing = _UNLOCATABLE_PACKAGE_RE.findall(output) + _NO_CANDIDATE_RE.findall(output)
        missing = [name for name in dict.fromkeys(missing) if name in self.packages]
        if missing:
            return PackageResolutionError(
                f"Package(s) not available for the base image: {', '.join(missing)}",
                packages=missing,
            )
        if exit_code == APT_FAILURE_EXIT:
            return PackageResolutionError(
                f"apt-get could not resolve {', '.join(self.packages)}",
                packages=list(self.packages),
            )
        return None


class CreateAccountStep(ProvisioningStep):
    """Create the operator login account."""

    requires_root = True

    def __init__(self, account: OperatorAccount):
        self.account = account

    def describe(self) -> str:
        return f"create account {self.account.name} (uid {self.account.uid})"

    def render(self, escalate: bool = False) -> list[str]:
        account = self.account
        args = ["useradd", "-l", "-u", str(account.uid)]
        if account.groups:
            args.extend(["-G", ",".join(sorted(account.groups))])
        args.extend(["-md", account.home, "-s", account.shell, "-p", account.name, account.name])
        command = _sudo(" ".join(shlex.quote(arg) for arg in args), escalate)
        if account.can_escalate:
            # Passwordless sudo so later steps can re-escalate non-interactively.
            command += " && " + _sudo(
                r"sed -i.bkp -e 's/%sudo\s\+ALL=(ALL\(:ALL\)\?)\s\+ALL/%sudo ALL=NOPASSWD:ALL/g'"
                " /etc/sudoers",
                escalate,
            )
        return [f"RUN {command}"]

    def classify_failure(self, exit_code, output):
        if exit_code == USERADD_UID_IN_USE_EXIT:
            return AccountCreationError(
                f"uid {self.account.uid} is already taken in the base image"
            )
        if exit_code == USERADD_NAME_IN_USE_EXIT:
            return AccountCreationError(
                f"user name {self.account.name} is already taken in the base image"
            )
        if exit_code == USERADD_BAD_GROUP_EXIT:
            return AccountCreationError(
                f"group(s) {', '.join(sorted(self.account.groups))} missing in the base image"
            )
        return None


class SwitchAccountStep(ProvisioningStep):
    """Run every following step as the operator account."""

    def __init__(self, account: OperatorAccount):
        self.account = account

    def describe(self) -> str:
        return f"switch to account {self.account.name}"

    def render(self, escalate: bool = False) -> list[str]:
        return [f"USER {self.account.name}"]


class CopyDirectoryStep(ProvisioningStep):
    """Duplicate a directory tree inside the image and hand it to an owner."""

    requires_root = True

    def __init__(self, source: str, destination: str, owner: OperatorAccount):
        self.source = _require_absolute(source, CopyError)
        self.destination = _require_absolute(destination, CopyError)
        if self.source == self.destination:
            raise CopyError(f"Copy source and destination are the same: {source}")
        self.owner = owner

    def describe(self) -> str:
        return f"copy {self.source} to {self.destination} owned by {self.owner.name}"

    def render(self, escalate: bool = False) -> list[str]:
        src = shlex.quote(self.source)
        dst = shlex.quote(self.destination)
        owner = f"{self.owner.name}:{self.owner.name}"
        command = (
            f"{_sudo(f'test -d {src}', escalate)} || exit {MISSING_SOURCE_EXIT}; "
            + " && ".join([
                _sudo(f"mkdir -p {dst}", escalate),
                # "src/." copies the contents, keeping relative paths identical
                _sudo(f"cp -a {src}/. {dst}/", escalate),
                _sudo(f"chown -R {owner} {dst}", escalate),
            ])
        )
        return [f"RUN {command}"]

    def classify_failure(self, exit_code, output):
        if exit_code == MISSING_SOURCE_EXIT:
            return CopyError(f"Copy source does not exist: {self.source}")
        return CopyError(
            f"Copying {self.source} to {self.destination} failed (exit code {exit_code})"
        )


class EnvironmentStep(ProvisioningStep):
    """Set environment variables for the rest of the build and the final image."""

    def __init__(self, variables: dict[str, str]):
        if not variables:
            raise ValueError("EnvironmentStep needs at least one variable")
        for key in variables:
            if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", key):
                raise ValueError(f"Invalid environment variable name: {key}")
        self.variables = dict(variables)

    def describe(self) -> str:
        return f"set environment {', '.join(self.variables)}"

    def render(self, escalate: bool = False) -> list[str]:
        # One ENV per variable so later values can reference earlier ones.
        return [
            f'ENV {key}="{_escape_env_value(value)}"'
            for key, value in self.variables.items()
        ]


class RunCommandStep(ProvisioningStep):
    """Arbitrary shell command, for profile-specific toolchain activation."""

    def __init__(self, command: str, requires_root: bool = False):
        if not command.strip():
            raise ValueError("RunCommandStep needs a command")
        self.command = command.strip()
        self.requires_root = requires_root

    def describe(self) -> str:
        return f"run {self.command}"

    def render(self, escalate: bool = False) -> list[str]:
        return [f"RUN {_sudo(self.command, escalate)}"]
