"""Run an external command and return its captured output."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from os import PathLike

from .exceptions import ExternalToolFailed

logger = logging.getLogger(__name__)

CommandArg = str | int | float | PathLike
CommandRunner = Callable[[str, Sequence[CommandArg]], Awaitable[bytes]]


async def run_command(command: str, args: Sequence[CommandArg]) -> bytes:
    """Execute ``command`` with ``args`` and return its stdout.

    Raises:
        ExternalToolFailed: If the process exits non-zero or cannot be spawned
    """
    argv = [str(arg) for arg in args]
    logger.debug(f"Running {command} {' '.join(argv)}")

    try:
        process = await asyncio.create_subprocess_exec(
            command,
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ExternalToolFailed(command, None, str(e)) from e

    stdout, stderr = await process.communicate()

    if process.returncode != 0:
        message = stderr.decode("utf-8", errors="replace")
        logger.warning(f"{command} exited with code {process.returncode}")
        raise ExternalToolFailed(command, process.returncode, message)

    return stdout
