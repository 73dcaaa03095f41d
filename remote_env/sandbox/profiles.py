"""
Named build profiles: a base image plus the ordered steps applied to it.
"""

from dataclasses import dataclass

from .base import REQUIRED_OPERATOR_UID, BaseImageReference, OperatorAccount
from .steps import (
    CopyDirectoryStep,
    CreateAccountStep,
    EnvironmentStep,
    PackageInstallStep,
    ProvisioningStep,
    SwitchAccountStep,
)


@dataclass(frozen=True)
class BuildProfile:
    """A swappable provisioning configuration for the image builder."""

    name: str
    base_image: BaseImageReference
    steps: tuple[ProvisioningStep, ...]
    description: str = ""


GITPOD_OPERATOR = OperatorAccount(
    name="gitpod",
    uid=REQUIRED_OPERATOR_UID,
    groups=frozenset({"sudo"}),
    home="/home/gitpod",
    shell="/bin/bash",
)

CARGO_HOME = "/usr/local/cargo"
OPERATOR_CARGO_HOME = f"{GITPOD_OPERATOR.home}/.cargo"

ZTUNNEL_PROFILE = BuildProfile(
    name="ztunnel",
    base_image=BaseImageReference("rust", "1.66"),
    steps=(
        PackageInstallStep({"git", "git-lfs", "sudo"}),
        CreateAccountStep(GITPOD_OPERATOR),
        SwitchAccountStep(GITPOD_OPERATOR),
        CopyDirectoryStep(CARGO_HOME, OPERATOR_CARGO_HOME, GITPOD_OPERATOR),
        EnvironmentStep({
            "CARGO_HOME": OPERATOR_CARGO_HOME,
            "PATH": f"{OPERATOR_CARGO_HOME}/bin:$PATH",
        }),
    ),
    description="Rust toolchain with a gitpod operator owning its own cargo home",
)

PROFILES = {
    ZTUNNEL_PROFILE.name: ZTUNNEL_PROFILE,
}


def get_profile(name: str) -> BuildProfile:
    """
    Look up a build profile by name.

    Raises:
        KeyError: If no profile with that name exists
    """
    try:
        return PROFILES[name]
    except KeyError:
        raise KeyError(
            f"Unknown build profile '{name}' (available: {', '.join(sorted(PROFILES))})"
        ) from None
