"""
The user-visible job narrative.

Every line goes three places: the in-memory buffer (the job's `log`
field), the job's LogTopic for live observers, and a debounced write to
the repository so a crash loses at most one flush interval of output.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Awaitable, Callable

from loguru import logger

from vampire.event_bus import LogTopic
from vampire.repository import JobRepository


class FlushScheduler:
    """At most one pending flush per job in any `interval` window."""

    def __init__(self, interval: float = 2.0):
        self.interval = interval
        self._pending: dict[int, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()
        self._lock = threading.Lock()

    def schedule(self, job_id: int, flush: Callable[[], Awaitable[None]]) -> None:
        with self._lock:
            if job_id in self._pending:
                return
            loop = asyncio.get_running_loop()
            self._pending[job_id] = loop.call_later(self.interval, self._fire, job_id, flush)

    def is_pending(self, job_id: int) -> bool:
        with self._lock:
            return job_id in self._pending

    def cancel(self, job_id: int) -> None:
        with self._lock:
            handle = self._pending.pop(job_id, None)
        if handle is not None:
            handle.cancel()

    def _fire(self, job_id: int, flush: Callable[[], Awaitable[None]]) -> None:
        with self._lock:
            self._pending.pop(job_id, None)
        task = asyncio.ensure_future(self._run(job_id, flush))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _run(job_id: int, flush: Callable[[], Awaitable[None]]) -> None:
        try:
            await flush()
        except Exception as e:
            logger.warning(f"[LOG] Periodic log flush failed for job {job_id}: {e}")


class JobLog:

    def __init__(
        self,
        job_id: int,
        topic: LogTopic,
        repository: JobRepository,
        scheduler: FlushScheduler,
    ):
        self.job_id = job_id
        self.topic = topic
        self.repository = repository
        self.scheduler = scheduler
        self._chunks: list[str] = []

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    def __call__(self, text: str = "") -> None:
        self._chunks.append(text + "\n")
        self.topic.publish(text)
        self.scheduler.schedule(self.job_id, self.flush)

    async def flush(self) -> None:
        await self.repository.update_log(self.job_id, self.text)

    def close(self) -> None:
        """Drop any pending periodic flush; the final write supersedes it."""
        self.scheduler.cancel(self.job_id)
