"""
Async command runner shared by the git and gh wrappers.

Every external command gets a timeout. A non-zero exit raises
CommandError unless the caller asks for check=False.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

from loguru import logger


class CommandError(Exception):
    """An external command exited non-zero (or could not be started)."""

    def __init__(self, cmd: list[str], returncode: int | None, stderr: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(f"Command failed ({returncode}): {' '.join(cmd)}{detail}")


class CommandNotFoundError(CommandError):
    def __init__(self, cmd: list[str]):
        super().__init__(cmd, None, f"{cmd[0]}: command not found")


class CommandTimeoutError(CommandError):
    def __init__(self, cmd: list[str], timeout: float):
        self.timeout = timeout
        super().__init__(cmd, None, f"timed out after {timeout:g}s")


async def run_cmd(
    cmd: list[str],
    cwd: Path | str | None = None,
    timeout: float = 120,
    check: bool = True,
    env: dict[str, str] | None = None,
) -> str:
    """Run a command to completion and return its stripped stdout."""
    logger.debug(f"[SHELL] {' '.join(cmd)} (cwd={cwd})")
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd) if cwd else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env if env is not None else os.environ.copy(),
        )
    except FileNotFoundError:
        raise CommandNotFoundError(cmd)

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise CommandTimeoutError(cmd, timeout)
    except asyncio.CancelledError:
        proc.kill()
        await proc.wait()
        raise

    if check and proc.returncode != 0:
        raise CommandError(cmd, proc.returncode, stderr.decode(errors="replace"))
    return stdout.decode(errors="replace").strip()

