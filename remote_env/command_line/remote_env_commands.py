"""Command handlers for building and launching the dev sandbox.

Each handler takes the parsed argparse namespace and returns the process
exit code.
"""

import logging
import os

from remote_env import config
from remote_env.messaging import emit_code, emit_error, emit_info, emit_success, emit_warning
from remote_env.sandbox import (
    BuildError,
    ImageBuilder,
    LaunchError,
    PortMapping,
    SandboxLauncher,
    get_container_runtime,
    get_profile,
)
from remote_env.sandbox.base import ContainerRuntime
from remote_env.sandbox.errors import ProvisioningError
from remote_env.sandbox.runtime import DryRunRuntime
from remote_env.tools.command_runner import COMMAND_NOT_FOUND_EXIT

logger = logging.getLogger(__name__)

# Number of trailing build output lines shown on failure
BUILD_OUTPUT_TAIL = 20


def _get_runtime(args) -> ContainerRuntime:
    return get_container_runtime(
        dry_run=getattr(args, "dry_run", False),
        docker_binary=config.get_docker_binary(),
        build_timeout=config.get_build_timeout(),
    )


def _require_available(runtime: ContainerRuntime) -> bool:
    if runtime.is_available():
        return True
    emit_error(
        f"{runtime.get_platform()} is not available on this system. "
        "Install docker, or pass --dry-run to see the commands."
    )
    return False


def _emit_recorded_commands(runtime: ContainerRuntime) -> None:
    if isinstance(runtime, DryRunRuntime):
        for argv in runtime.commands:
            emit_code("$ " + " ".join(argv))


def _working_directory() -> str:
    """The shell's logical working directory, keeping symlinked path segments."""
    cwd = os.getcwd()
    logical = os.environ.get("PWD")
    if logical and os.path.isabs(logical):
        try:
            if os.path.samefile(logical, cwd):
                return logical
        except OSError as e:
            logger.debug(f"Ignoring PWD {logical}: {e}")
    return cwd


def _make_builder(args, runtime: ContainerRuntime) -> ImageBuilder:
    profile = get_profile(args.profile or config.get_build_profile())
    tag = args.tag or config.get_image_tag()
    base_image = args.base_image or config.get_base_image()
    return ImageBuilder.from_profile(profile, tag, runtime, base_image=base_image)


def handle_render_command(args) -> int:
    """Write the provisioning description (Dockerfile) of a profile."""
    try:
        builder = _make_builder(args, DryRunRuntime())
    except (KeyError, ProvisioningError, BuildError) as e:
        emit_error(f"Invalid build profile: {e}")
        return 2

    dockerfile = builder.render()
    if args.output:
        try:
            with open(args.output, "w") as f:
                f.write(dockerfile)
        except OSError as e:
            emit_error(f"Could not write {args.output}: {e}")
            return 1
        emit_success(f"Wrote {args.output}")
    else:
        emit_code(dockerfile)
    return 0


def handle_build_command(args) -> int:
    """Build and tag the sandbox image."""
    runtime = _get_runtime(args)
    if not _require_available(runtime):
        return COMMAND_NOT_FOUND_EXIT

    try:
        builder = _make_builder(args, runtime)
    except (KeyError, ProvisioningError, BuildError) as e:
        emit_error(f"Invalid build profile: {e}")
        return 2

    emit_info(f"Building {builder.tag} from {builder.base_image} ({len(builder.steps)} steps)")
    try:
        artifact = builder.finalize()
    except BuildError as e:
        emit_error(f"Build failed: {e}")
        if e.output:
            tail = e.output.strip().splitlines()[-BUILD_OUTPUT_TAIL:]
            emit_code("\n".join(tail))
        emit_warning("No image was tagged. Fix the failing step and rebuild from scratch.")
        return 1

    _emit_recorded_commands(runtime)
    emit_success(f"Built {artifact.tag} ({artifact.image_id})")
    return 0


def handle_run_command(args) -> int:
    """Start the privileged sandbox with the current directory mounted."""
    runtime = _get_runtime(args)
    if not _require_available(runtime):
        return COMMAND_NOT_FOUND_EXIT

    try:
        port_map = PortMapping(
            config.get_host_port(), config.get_container_port(), config.get_bind_address()
        )
    except ValueError as e:
        emit_error(f"Invalid port configuration: {e}")
        return 2

    launcher = SandboxLauncher(runtime)
    try:
        handle = launcher.launch(
            config.get_image_tag(),
            _working_directory(),
            config.get_container_name(),
            port_map,
            privileged=True,
            mount_target=config.get_mount_target(),
        )
    except LaunchError as e:
        emit_error(str(e))
        return e.exit_code or 1

    _emit_recorded_commands(runtime)
    emit_success(f"Started {handle.name} ({handle.container_id[:12]})")
    emit_info(f"Remote shell: {handle.endpoint}")
    emit_info(f"Source: {handle.mount_source} -> {handle.mount_target}")
    return 0


def handle_status_command(args) -> int:
    """Show the state of the sandbox instance."""
    runtime = _get_runtime(args)
    if not _require_available(runtime):
        return COMMAND_NOT_FOUND_EXIT

    name = config.get_container_name()
    try:
        state = runtime.inspect_container(name)
    except RuntimeError as e:
        emit_error(str(e))
        return 1

    if state is None:
        emit_warning(f"{name}: not created")
        return 1
    emit_info(f"{name}: {state.value}")
    return 0


def handle_config_command(args) -> int:
    """Show all settings, or persist one."""
    if args.key is None:
        for key in config.get_config_keys():
            value = config.get_value(key)
            if value is None:
                value = config.DEFAULTS.get(key, "")
            emit_info(f"{key} = {value}")
        return 0

    if args.value is None:
        value = config.get_value(args.key)
        if value is None:
            value = config.DEFAULTS.get(args.key)
        if value is None:
            emit_error(f"{args.key} is not set")
            return 1
        emit_info(value)
        return 0

    try:
        config.set_config_value(args.key, args.value)
    except ValueError as e:
        emit_error(str(e))
        return 2
    emit_success(f"Set {args.key} = {args.value}")
    return 0
