"""
Claude Code CLI provider.

Runs `claude -p --output-format stream-json` unattended inside the job's
workspace and turns its stdout records into tool-use / text callbacks.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

from loguru import logger

from vampire.providers.base import (
    AgentExitError,
    AgentHandle,
    AgentProvider,
    ConnectionResult,
    ProviderInfo,
    StreamCallbacks,
)
from vampire.providers.stream import StreamAccumulator
from vampire.shell import CommandError, CommandNotFoundError, run_cmd

READ_CHUNK = 4096


def _clean_env() -> dict[str, str]:
    """Parent env minus the marker that makes a nested CLI think it's inside a session."""
    env = os.environ.copy()
    env.pop("CLAUDECODE", None)
    return env


class ClaudeProvider(AgentProvider):

    def __init__(
        self,
        executable: str = "claude",
        co_author: str = "Claude <noreply@anthropic.com>",
        test_timeout: float = 30,
    ):
        self.executable = executable
        self.test_timeout = test_timeout
        self.info = ProviderInfo(name="claude", display_name="Claude Code", co_author=co_author)

    def build_command(self, prompt: str) -> list[str]:
        return [
            self.executable,
            "-p", "--dangerously-skip-permissions",
            "--output-format", "stream-json", "--verbose",
            prompt,
        ]

    async def test_connection(self) -> ConnectionResult:
        env = _clean_env()
        try:
            version = await run_cmd([self.executable, "--version"], timeout=10, env=env)
            reply = await run_cmd(
                [self.executable, "-p", "Respond with exactly: OK", "--output-format", "text"],
                timeout=self.test_timeout,
                env=env,
            )
        except CommandNotFoundError:
            return ConnectionResult(
                False, "Claude CLI not found. Install: npm install -g @anthropic-ai/claude-code"
            )
        except CommandError as e:
            return ConnectionResult(False, f"Connection failed: {e}")

        if "ok" in reply.lower():
            return ConnectionResult(True, f"Claude Code {version} is ready.")
        return ConnectionResult(False, f"CLI responded but output was unexpected: {reply[:100]}")

    async def run_agent(self, prompt: str, cwd: Path, callbacks: StreamCallbacks) -> AgentHandle:
        cmd = self.build_command(prompt)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd),
                env=_clean_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise CommandNotFoundError(cmd)

        logger.info(f"[PROVIDER] {self.info.display_name} started (pid {process.pid}) in {cwd}")
        return AgentHandle(process, self._collect(process, callbacks))

    async def _collect(self, process: asyncio.subprocess.Process, callbacks: StreamCallbacks) -> str:
        accumulator = StreamAccumulator(callbacks)

        async def read_stdout() -> None:
            while chunk := await process.stdout.read(READ_CHUNK):
                accumulator.feed(chunk)
            accumulator.close()

        async def read_stderr() -> None:
            while chunk := await process.stderr.read(READ_CHUNK):
                text = chunk.decode(errors="replace").strip()
                if text:
                    callbacks.on_text(text)

        await asyncio.gather(read_stdout(), read_stderr())
        returncode = await process.wait()
        if returncode != 0:
            raise AgentExitError(self.info.display_name, returncode)
        return accumulator.result
