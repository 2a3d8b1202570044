"""
Cancellation tokens and the process-wide registry of running jobs.

A job's token is the single cancellation path: the engine checks it at
every stage boundary, and cancelling it also kills whatever agent process
the job is currently running.
"""

from __future__ import annotations

import asyncio
import signal as signals
import threading

from loguru import logger

from vampire.providers.base import AgentHandle


class JobCancelled(Exception):
    """Unwinds a job to cleanup without commit/push. Not an error."""
    pass


class CancelToken:

    def __init__(self, job_id: int, kill_grace: float = 5.0):
        self.job_id = job_id
        self.kill_grace = kill_grace
        self._cancelled = threading.Event()
        self._handle: AgentHandle | None = None
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def attach(self, handle: AgentHandle) -> None:
        """Track the job's running agent. Cancelled jobs kill it on arrival."""
        with self._lock:
            self._handle = handle
        if self.cancelled:
            self._terminate(handle)

    def detach(self) -> None:
        with self._lock:
            self._handle = None

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            handle = self._handle
        if handle is not None:
            self._terminate(handle)

    def kill(self, sig: int = signals.SIGTERM) -> None:
        """Signal the current agent process without marking the job cancelled."""
        with self._lock:
            handle = self._handle
        if handle is not None:
            handle.kill(sig)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise JobCancelled(f"Job {self.job_id} cancelled")

    def _terminate(self, handle: AgentHandle) -> None:
        """SIGTERM now, SIGKILL after the grace period if it is still alive."""
        handle.kill(signals.SIGTERM)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            loop.call_later(self.kill_grace, handle.kill, signals.SIGKILL)


class CancellationRegistry:
    """Job id -> CancelToken for every job that has not reached a terminal state."""

    def __init__(self) -> None:
        self._tokens: dict[int, CancelToken] = {}
        self._lock = threading.Lock()

    def register(self, token: CancelToken) -> None:
        with self._lock:
            self._tokens[token.job_id] = token

    def get(self, job_id: int) -> CancelToken | None:
        with self._lock:
            return self._tokens.get(job_id)

    def cancel(self, job_id: int) -> bool:
        """Cancel a running job. False if nothing is registered for it."""
        with self._lock:
            token = self._tokens.pop(job_id, None)
        if token is None:
            return False
        logger.info(f"[CANCEL] Cancelling job {job_id}")
        token.cancel()
        return True

    def remove(self, job_id: int) -> None:
        with self._lock:
            self._tokens.pop(job_id, None)

    def __contains__(self, job_id: int) -> bool:
        with self._lock:
            return job_id in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
