import logging
import os
import shlex
import signal
import subprocess
import sys
import time
from typing import Optional, Sequence

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Exit status shells use when a command cannot be found
COMMAND_NOT_FOUND_EXIT = 127


class CommandOutput(BaseModel):
    success: bool
    command: str | None
    error: str | None = ""
    stdout: str | None
    stderr: str | None
    exit_code: int | None
    execution_time: float | None
    timeout: bool | None = False

    @property
    def combined_output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


def _kill_process_group(proc: subprocess.Popen) -> None:
    """Terminate a process and its group, escalating to SIGKILL."""
    if sys.platform.startswith("win"):
        proc.kill()
        return

    try:
        pgid = os.getpgid(proc.pid)
    except ProcessLookupError:
        return

    for sig in (signal.SIGTERM, signal.SIGKILL):
        try:
            os.killpg(pgid, sig)
        except ProcessLookupError:
            return
        try:
            proc.wait(timeout=2)
            return
        except subprocess.TimeoutExpired:
            continue


def run_command(
    argv: Sequence[str],
    input_text: Optional[str] = None,
    cwd: Optional[str] = None,
    env: Optional[dict[str, str]] = None,
    timeout: Optional[float] = None,
) -> CommandOutput:
    """
    Run a command to completion and capture its output.

    Args:
        argv: Program and arguments, not passed through a shell
        input_text: Text written to the command's stdin
        cwd: Working directory
        env: Full environment for the child (inherits ours when None)
        timeout: Seconds before the process group is killed

    Returns:
        CommandOutput describing the run. A missing executable is reported
        as exit code 127, not raised.
    """
    command = " ".join(shlex.quote(arg) for arg in argv)
    logger.debug(f"Running: {command}")
    start_time = time.time()

    try:
        process = subprocess.Popen(
            list(argv),
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            cwd=cwd,
            env=env,
            start_new_session=not sys.platform.startswith("win"),
        )
    except FileNotFoundError as e:
        logger.error(f"Executable not found: {argv[0]}")
        return CommandOutput(
            success=False,
            command=command,
            error=str(e),
            stdout="",
            stderr="",
            exit_code=COMMAND_NOT_FOUND_EXIT,
            execution_time=0.0,
        )

    try:
        stdout, stderr = process.communicate(input=input_text, timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_process_group(process)
        stdout, stderr = process.communicate()
        execution_time = time.time() - start_time
        logger.error(f"Command timed out after {timeout} seconds: {command}")
        return CommandOutput(
            success=False,
            command=command,
            error=f"Command timed out after {timeout} seconds",
            stdout=stdout,
            stderr=stderr,
            exit_code=process.returncode,
            execution_time=execution_time,
            timeout=True,
        )

    execution_time = time.time() - start_time
    exit_code = process.returncode
    if exit_code != 0:
        logger.debug(f"Command exited with {exit_code}: {command}")

    return CommandOutput(
        success=exit_code == 0,
        command=command,
        error="" if exit_code == 0 else f"Command exited with code {exit_code}",
        stdout=stdout,
        stderr=stderr,
        exit_code=exit_code,
        execution_time=execution_time,
    )
