"""
Image builder: turns a base image and ordered provisioning steps into one
tagged image.
"""

import logging
import re
import tempfile
from typing import Iterable, Optional, Union

from .base import (
    BaseImageReference,
    ContainerRuntime,
    ImageArtifact,
    OperatorAccount,
)
from .errors import (
    AccountCreationError,
    BuildError,
    ImageBuildFailed,
    ProvisioningOrderError,
)
from .profiles import BuildProfile
from .steps import (
    CopyDirectoryStep,
    CreateAccountStep,
    EnvironmentStep,
    PackageInstallStep,
    ProvisioningStep,
    RunCommandStep,
    SwitchAccountStep,
)

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def _normalize(command: str) -> str:
    return _WHITESPACE_RE.sub(" ", command).strip()


class ImageBuilder:
    """
    Collects provisioning steps and commits them into a single image.

    Steps are validated as they are declared: root-only work after the
    account switch is re-escalated through sudo, and accounts must exist
    before anything is switched to or owned by them. A builder is
    single-use; once finalize() has run, successfully or not, a new build
    has to replay the whole sequence from the first step.
    """

    def __init__(
        self,
        base_image: Union[BaseImageReference, str],
        tag: str,
        runtime: ContainerRuntime,
    ):
        if isinstance(base_image, str):
            base_image = BaseImageReference.parse(base_image)
        if not tag:
            raise ValueError("An image tag is required")
        self.base_image = base_image
        self.tag = tag
        self.runtime = runtime
        self._steps: list[tuple[ProvisioningStep, bool]] = []
        self._account: Optional[OperatorAccount] = None
        self._active_account: Optional[OperatorAccount] = None
        self._consumed = False

    @classmethod
    def from_profile(
        cls,
        profile: BuildProfile,
        tag: str,
        runtime: ContainerRuntime,
        base_image: Optional[Union[BaseImageReference, str]] = None,
    ) -> "ImageBuilder":
        """Create a builder with every step of a profile declared in order."""
        builder = cls(base_image or profile.base_image, tag, runtime)
        for step in profile.steps:
            builder.add_step(step)
        return builder

    @property
    def steps(self) -> list[ProvisioningStep]:
        return [step for step, _ in self._steps]

    @property
    def active_account(self) -> Optional[OperatorAccount]:
        """Account later steps run as, None while still root."""
        return self._active_account

    def add_step(self, step: ProvisioningStep) -> ProvisioningStep:
        """
        Declare the next provisioning step.

        Raises:
            BuildError: If the builder was already finalized
            ProvisioningOrderError: If the step cannot run at this point
            AccountCreationError: If a second account is declared
        """
        if self._consumed:
            raise BuildError(
                "This build was already finalized; start a new build from the first step"
            )

        if isinstance(step, CreateAccountStep):
            if self._account is not None:
                raise AccountCreationError(
                    f"Operator account {self._account.name} was already created in this build"
                )
        elif isinstance(step, SwitchAccountStep):
            if self._active_account is not None:
                raise ProvisioningOrderError(
                    f"Already running as {self._active_account.name}; the switch is one-way"
                )
            if step.account != self._account:
                raise ProvisioningOrderError(
                    f"Cannot switch to {step.account.name} before it is created"
                )
        elif isinstance(step, CopyDirectoryStep):
            if step.owner != self._account:
                raise ProvisioningOrderError(
                    f"Cannot hand {step.destination} to {step.owner.name} before it is created"
                )

        escalate = step.requires_root and self._active_account is not None
        if escalate and not self._active_account.can_escalate:
            raise ProvisioningOrderError(
                f"'{step.describe()}' needs root but {self._active_account.name} "
                f"cannot sudo; declare it before the account switch"
            )

        if isinstance(step, CreateAccountStep):
            self._account = step.account
        elif isinstance(step, SwitchAccountStep):
            self._active_account = step.account

        self._steps.append((step, escalate))
        logger.debug(f"Declared step {len(self._steps)}: {step.describe()}")
        return step

    def add_package_install_step(self, packages: Iterable[str]) -> PackageInstallStep:
        """Declare packages that must be present in the final image."""
        return self.add_step(PackageInstallStep(packages))

    def create_operator_account(
        self,
        uid: int,
        groups: Iterable[str],
        home: str,
        shell: str,
        name: str = "gitpod",
    ) -> OperatorAccount:
        """
        Declare the operator account.

        Raises:
            AccountCreationError: If uid is not the required 33333 (checked by
                OperatorAccount)
        """
        account = OperatorAccount(
            name=name, uid=uid, groups=frozenset(groups), home=home, shell=shell
        )
        self.add_step(CreateAccountStep(account))
        return account

    def switch_active_account(self, account: OperatorAccount) -> None:
        self.add_step(SwitchAccountStep(account))

    def copy_directory(self, source: str, destination: str, owner: OperatorAccount) -> None:
        self.add_step(CopyDirectoryStep(source, destination, owner))

    def set_environment(self, variables: dict[str, str]) -> None:
        self.add_step(EnvironmentStep(variables))

    def run_command(self, command: str, requires_root: bool = False) -> None:
        self.add_step(RunCommandStep(command, requires_root=requires_root))

    def render(self) -> str:
        """Render the declared steps as a Dockerfile."""
        lines = [f"FROM {self.base_image}"]
        for step, escalate in self._steps:
            lines.append(f"# {step.describe()}")
            lines.extend(step.render(escalate))
        return "\n".join(lines) + "\n"

    def replay(self) -> "ImageBuilder":
        """A fresh builder declaring the same sequence from the first step."""
        builder = ImageBuilder(self.base_image, self.tag, self.runtime)
        for step in self.steps:
            builder.add_step(step)
        return builder

    def finalize(self) -> ImageArtifact:
        """
        Commit all steps into a single tagged image.

        Returns:
            The built ImageArtifact

        Raises:
            BuildError: Wrapping the first failing step. The builder cannot
                be finalized again.
        """
        if self._consumed:
            raise BuildError(
                "This build was already finalized; start a new build from the first step"
            )
        self._consumed = True

        if not self._steps:
            raise BuildError("Nothing to build: no provisioning steps declared")

        dockerfile = self.render()
        logger.info(
            f"Building {self.tag} from {self.base_image} with {len(self._steps)} steps "
            f"on {self.runtime.get_platform()}"
        )
        logger.debug(f"Rendered Dockerfile:\n{dockerfile}")

        with tempfile.TemporaryDirectory(prefix="remote-env-build-") as context_dir:
            try:
                image_id = self.runtime.build_image(self.tag, dockerfile, context_dir)
            except ImageBuildFailed as e:
                error, cause = self._build_error(e)
                raise error from cause

        logger.info(f"Built {self.tag} ({image_id})")
        return ImageArtifact(
            tag=self.tag,
            image_id=image_id,
            base_image=self.base_image,
            dockerfile=dockerfile,
        )

    def _find_failed_step(self, failed_command: Optional[str]) -> Optional[int]:
        if not failed_command:
            return None
        target = _normalize(failed_command)
        for index, (step, escalate) in enumerate(self._steps):
            for command in step.run_commands(escalate):
                if _normalize(command) == target:
                    return index
        # Some platforms shorten the reported command.
        for index, (step, escalate) in enumerate(self._steps):
            for command in step.run_commands(escalate):
                normalized = _normalize(command)
                if normalized.startswith(target) or target.startswith(normalized):
                    return index
        return None

    def _build_error(self, failure: ImageBuildFailed) -> tuple[BuildError, Exception]:
        index = self._find_failed_step(failure.failed_command)
        if index is None:
            logger.error(f"Build of {self.tag} failed outside any declared step")
            error = BuildError(
                f"Build of {self.tag} failed (exit code {failure.exit_code}); "
                f"the base image {self.base_image} may be unavailable",
                output=failure.output,
            )
            return error, failure

        step = self._steps[index][0]
        cause = step.classify_failure(failure.step_exit_code, failure.output)
        reason = str(cause) if cause else f"exit code {failure.step_exit_code}"
        logger.error(f"Build of {self.tag} failed at step {index + 1} ({step.describe()}): {reason}")
        error = BuildError(
            f"Step {index + 1} ({step.describe()}) failed: {reason}",
            step_index=index,
            step_description=step.describe(),
            output=failure.output,
        )
        return error, cause or failure
