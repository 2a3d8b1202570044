"""
Agent Provider contract.

A provider turns (prompt, working directory) into one running coding-agent
process plus a stream of tool-use / text callbacks. The engine only ever
talks to this interface; each backend lives in its own module.
"""

from __future__ import annotations

import asyncio
import signal as signals
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

from loguru import logger


@dataclass(frozen=True)
class ProviderInfo:
    name: str
    display_name: str
    co_author: str = ""
    coming_soon: bool = False


@dataclass(frozen=True)
class ConnectionResult:
    ok: bool
    message: str


@dataclass
class StreamCallbacks:
    on_tool_use: Callable[[str, dict[str, Any]], None]
    on_text: Callable[[str], None]


class AgentExitError(Exception):
    def __init__(self, agent: str, returncode: int | None):
        self.returncode = returncode
        super().__init__(f"{agent} exited with code {returncode}")


class AgentTimeoutError(Exception):
    pass


class AgentHandle:
    """
    A running agent: the process (if any) and the pending final result.

    `result_task` resolves to the agent's final text, or raises
    AgentExitError when the process exits non-zero.
    """

    def __init__(self, process: asyncio.subprocess.Process | None, result_task: Awaitable[str]):
        self.process = process
        self._result = asyncio.ensure_future(result_task)

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    def kill(self, sig: int = signals.SIGTERM) -> None:
        if not self.running:
            return
        try:
            self.process.send_signal(sig)
        except ProcessLookupError:
            # exited between the check and the signal
            return
        logger.info(f"[PROVIDER] Sent signal {sig} to agent pid {self.process.pid}")

    async def terminate(self, grace: float = 5.0) -> None:
        """SIGTERM, then SIGKILL if the process is still around after `grace` seconds."""
        if not self.running:
            return
        self.kill(signals.SIGTERM)
        try:
            await asyncio.wait_for(self.process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            self.kill(signals.SIGKILL)

    async def stop(self, grace: float = 5.0) -> None:
        """Terminate the process and abandon its pending result."""
        await self.terminate(grace)
        self._result.cancel()

    async def result(self, timeout: float | None = None, grace: float = 5.0) -> str:
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout=timeout)
        except asyncio.TimeoutError:
            await self.stop(grace)
            raise AgentTimeoutError(f"Agent run timed out after {timeout:g}s")


class AgentProvider(ABC):
    """
    Base class for coding-agent backends.

    Subclasses define:
      - info: ProviderInfo — name, display name, commit co-author
      - test_connection() — is the backend installed and answering?
      - run_agent() — start one unattended agent process in `cwd`
    """

    info: ProviderInfo

    @abstractmethod
    async def test_connection(self) -> ConnectionResult:
        ...

    @abstractmethod
    async def run_agent(self, prompt: str, cwd: Path, callbacks: StreamCallbacks) -> AgentHandle:
        ...
