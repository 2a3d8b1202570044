"""
Retry Controller — run the agent until the workspace actually changes.

An agent that only "analyzes" and exits cleanly leaves the clone untouched.
That's retried with a prompt carrying its previous answer, up to
MAX_RETRY extra attempts. No backoff: each attempt is minutes long already.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception_type, stop_after_attempt

from vampire.cancellation import CancelToken
from vampire.prompts import summarize_tool_use
from vampire.providers.base import AgentExitError, AgentProvider, StreamCallbacks
from vampire.workspace import Workspace

MAX_RETRY = 2
RULE = "─" * 40


class NoChangesError(Exception):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__("no changes after retries")


class _NothingChanged(Exception):
    """One attempt finished without touching the workspace."""

    def __init__(self, output: str):
        self.output = output
        super().__init__("agent made no file changes")


class RetryController:

    def __init__(
        self,
        provider: AgentProvider,
        workspace: Workspace,
        log: Callable[[str], None],
        token: CancelToken,
        checkpoint: Callable[[], Awaitable[None]],
        retry_prompt: Callable[[str], str],
        on_exhausted: Callable[[], Awaitable[None]] | None = None,
        max_retry: int = MAX_RETRY,
        agent_timeout: float | None = None,
        kill_grace: float = 5.0,
    ):
        self.provider = provider
        self.workspace = workspace
        self.log = log
        self.token = token
        self.checkpoint = checkpoint
        self.retry_prompt = retry_prompt
        self.on_exhausted = on_exhausted
        self.max_retry = max_retry
        self.agent_timeout = agent_timeout
        self.kill_grace = kill_grace
        self.attempts = 0

    async def run(self, prompt: str) -> str:
        """Returns the final agent output of the first attempt that changed files."""
        output = ""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retry + 1),
            retry=retry_if_exception_type(_NothingChanged),
            before_sleep=self._announce_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    self.attempts = attempt.retry_state.attempt_number
                    await self.checkpoint()
                    if self.attempts > 1:
                        self.log("")
                        self.log(f"[4/5] Retry #{self.attempts - 1} — analyzing previous failure and retrying...")
                        self.log(RULE)
                        current = self.retry_prompt(output)
                    else:
                        current = prompt

                    output = await self._run_once(current)
                    self.log("")
                    self.log(RULE)

                    if not await self.workspace.has_changes():
                        raise _NothingChanged(output)
        except RetryError:
            self.log("")
            self.log(f"No changes detected after {self.max_retry} retries.")
            if self.on_exhausted:
                await self.on_exhausted()
            raise NoChangesError(self.attempts)

        logger.info(f"[RETRY] Changes detected on attempt {self.attempts}")
        return output

    async def _run_once(self, prompt: str) -> str:
        callbacks = StreamCallbacks(
            on_tool_use=lambda name, tool_input: self.log(summarize_tool_use(name, tool_input)),
            on_text=lambda text: self.log(text.rstrip("\n")),
        )
        handle = await self.provider.run_agent(prompt, self.workspace.path, callbacks)
        self.token.attach(handle)
        try:
            return await handle.result(timeout=self.agent_timeout, grace=self.kill_grace)
        except AgentExitError:
            # a killed agent exits non-zero; report that as the cancel it was
            self.token.raise_if_cancelled()
            raise
        except asyncio.CancelledError:
            # the job task itself was cancelled; don't leave the agent running
            await asyncio.shield(handle.stop(self.kill_grace))
            raise
        finally:
            self.token.detach()

    def _announce_retry(self, retry_state: RetryCallState) -> None:
        self.log("")
        self.log(f"No changes detected. Retrying... (attempt {retry_state.attempt_number}/{self.max_retry})")
