"""
User-facing output, rendered with rich.
"""

from rich.console import Console
from rich.text import Text

_console = Console()
_error_console = Console(stderr=True)


def emit_info(message: str) -> None:
    _console.print(Text(message))


def emit_success(message: str) -> None:
    _console.print(Text(message, style="bold green"))


def emit_warning(message: str) -> None:
    _error_console.print(Text(message, style="yellow"))


def emit_error(message: str) -> None:
    _error_console.print(Text(message, style="bold red"))


def emit_code(code: str) -> None:
    """Print text verbatim, without wrapping or highlighting."""
    _console.print(Text(code), soft_wrap=True, highlight=False)
