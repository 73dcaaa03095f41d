import argparse
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler

from remote_env.command_line.remote_env_commands import (
    handle_build_command,
    handle_config_command,
    handle_render_command,
    handle_run_command,
    handle_status_command,
)


def _add_profile_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--tag", help="Image tag (default: configured image_tag)")
    parser.add_argument("--profile", help="Build profile (default: configured build_profile)")
    parser.add_argument("--base-image", help="Override the profile's base image")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="remote-env",
        description="Build and run the privileged ztunnel development sandbox.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the docker commands instead of running them",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser("build", help="Build and tag the sandbox image")
    _add_profile_arguments(build)
    build.set_defaults(handler=handle_build_command)

    render = subparsers.add_parser("render", help="Write the image's Dockerfile")
    _add_profile_arguments(render)
    render.add_argument("-o", "--output", help="Write to this path instead of stdout")
    render.set_defaults(handler=handle_render_command)

    run = subparsers.add_parser(
        "run", help="Start the sandbox with the current directory mounted"
    )
    run.set_defaults(handler=handle_run_command)

    status = subparsers.add_parser("status", help="Show the sandbox instance state")
    status.set_defaults(handler=handle_status_command)

    config = subparsers.add_parser("config", help="Show or set configuration values")
    config.add_argument("key", nargs="?")
    config.add_argument("value", nargs="?")
    config.set_defaults(handler=handle_config_command)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
