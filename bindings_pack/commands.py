"""Async subprocess helpers for external build steps."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Mapping, Optional, Sequence

from .errors import ExternalProcessFailure

logger = logging.getLogger(__name__)

CommandRunner = Callable[[Sequence[str], Path], Awaitable[str]]


def render_command(template: Sequence[str], replacements: Mapping[str, str]) -> list[str]:
    """Substitute ``{placeholder}`` tokens in each argument of a command template."""

    rendered: list[str] = []
    for argument in template:
        for placeholder, value in replacements.items():
            argument = argument.replace(f"{{{placeholder}}}", value)
        rendered.append(argument)
    return rendered


async def run_command(
    command: Sequence[str],
    cwd: Path,
    *,
    stdin: Optional[bytes] = None,
    failure: type[ExternalProcessFailure] = ExternalProcessFailure,
) -> str:
    """Run ``command`` in ``cwd`` and return its stdout.

    The command blocks the pipeline until it exits; there is no timeout. A
    non-zero exit raises ``failure`` carrying the exit code and the captured
    output; a command that cannot be started raises it with status 127.
    """

    if not command:
        raise ValueError("Command must not be empty.")
    logger.debug("Running %s in %s", " ".join(command), cwd)
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd),
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise failure(command, 127, "", f"Unable to start {command[0]}: {exc}") from exc
    raw_stdout, raw_stderr = await proc.communicate(stdin)
    stdout = raw_stdout.decode("utf-8", errors="replace")
    stderr = raw_stderr.decode("utf-8", errors="replace")
    if proc.returncode != 0:
        if stdout.strip():
            logger.error("%s", stdout.rstrip())
        raise failure(command, proc.returncode, stdout, stderr)
    return stdout
