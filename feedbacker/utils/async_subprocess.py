"""Run external programs (git) from the event loop.

Clones and pushes can take minutes; awaiting them here suspends only the job
that issued them. Commands are exec'd directly, never through a shell, so
branch names and commit messages cannot inject anything.
"""

import asyncio
import os
import subprocess
from collections.abc import Mapping
from pathlib import Path
from typing import NamedTuple


class CommandResult(NamedTuple):
    stdout: str
    stderr: str
    returncode: int


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")


async def run_command(
    *args: str,
    cwd: Path | str | None = None,
    check: bool = True,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run ``args`` and collect its output.

    ``env`` is layered over the service's own environment; credentials are
    passed that way so they never show up in a process listing. A child that
    outlives ``timeout``, or whose caller is cancelled, is killed and reaped.

    Raises:
        subprocess.CalledProcessError: Non-zero exit while ``check`` is set
        TimeoutError: The command ran longer than ``timeout`` seconds
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env={**os.environ, **env} if env else None,
    )
    try:
        out, err = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except BaseException:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    result = CommandResult(_decode(out), _decode(err), process.returncode or 0)
    if check and result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, args, result.stdout, result.stderr)
    return result
