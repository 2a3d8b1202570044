"""
Per-job log broadcast.

Each job gets its own LogTopic. The engine publishes every log line to it
and closes it with the final status; any number of observers (SSE
streams, the CLI) subscribe and read events as an async iterator.
"""

from __future__ import annotations

import asyncio
import threading
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Literal

from loguru import logger
from pydantic import BaseModel, Field


class LogEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    job_id: int
    kind: Literal["log", "done"]
    data: str


class TooManySubscribersError(RuntimeError):
    pass


class Subscription:
    """One observer's queue. Iteration ends after the done event."""

    def __init__(self, topic: LogTopic):
        self.topic = topic
        self._queue: asyncio.Queue[LogEvent] = asyncio.Queue()
        self._finished = False

    def deliver(self, event: LogEvent) -> None:
        self._queue.put_nowait(event)

    async def get(self) -> LogEvent:
        return await self._queue.get()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> LogEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event.kind == "done":
            self._finished = True
        return event

    def close(self) -> None:
        self.topic.unsubscribe(self)

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()


class LogTopic:
    """
    Publish/subscribe channel for a single job.

    Lines published before a subscriber attached are not delivered to it
    unless it asks for replay, in which case the last `history_lines`
    lines come first.
    """

    def __init__(self, job_id: int, max_subscribers: int = 50, history_lines: int = 1000):
        self.job_id = job_id
        self.max_subscribers = max_subscribers
        self.status: str | None = None
        self._subscribers: list[Subscription] = []
        self._history: deque[LogEvent] = deque(maxlen=history_lines)
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self.status is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, replay: bool = False) -> Subscription:
        sub = Subscription(self)
        with self._lock:
            if self.closed:
                sub.deliver(self._done_event())
                return sub
            if len(self._subscribers) >= self.max_subscribers:
                raise TooManySubscribersError(
                    f"Job {self.job_id} already has {self.max_subscribers} log subscribers"
                )
            if replay:
                for event in self._history:
                    sub.deliver(event)
            self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)

    def publish(self, text: str) -> None:
        event = LogEvent(job_id=self.job_id, kind="log", data=text)
        with self._lock:
            if self.closed:
                logger.debug(f"[BUS] Dropping line for closed job {self.job_id}")
                return
            self._history.append(event)
            subscribers = list(self._subscribers)
        for sub in subscribers:
            sub.deliver(event)

    def close(self, status: str) -> bool:
        """Send the done event once; later subscribers get it immediately. False if already closed."""
        with self._lock:
            if self.closed:
                return False
            self.status = status
            subscribers = list(self._subscribers)
            self._subscribers.clear()
            self._history.clear()
        event = self._done_event()
        for sub in subscribers:
            sub.deliver(event)
        return True

    def _done_event(self) -> LogEvent:
        return LogEvent(job_id=self.job_id, kind="done", data=self.status or "done")


class LogBus:
    """
    Registry of per-job topics.

    Closed topics are kept so late subscribers still get the done event, but
    only the most recent `retained_topics` of them; older ones are dropped and
    observers fall back to the persisted job status.
    """

    def __init__(self, max_subscribers: int = 50, history_lines: int = 1000, retained_topics: int = 200):
        self.max_subscribers = max_subscribers
        self.history_lines = history_lines
        self.retained_topics = retained_topics
        self._topics: dict[int, LogTopic] = {}
        self._closed: deque[LogTopic] = deque()
        self._lock = threading.Lock()

    def open(self, job_id: int) -> LogTopic:
        """Fresh topic for a starting job (replaces any closed one)."""
        topic = LogTopic(job_id, self.max_subscribers, self.history_lines)
        with self._lock:
            self._topics[job_id] = topic
        return topic

    def topic(self, job_id: int) -> LogTopic | None:
        with self._lock:
            return self._topics.get(job_id)

    def subscribe(self, job_id: int, replay: bool = False) -> Subscription:
        topic = self.topic(job_id)
        if topic is None:
            raise KeyError(f"No log topic for job {job_id}")
        return topic.subscribe(replay=replay)

    def publish(self, job_id: int, text: str) -> None:
        topic = self.topic(job_id)
        if topic is not None:
            topic.publish(text)

    def close(self, job_id: int, status: str) -> None:
        topic = self.topic(job_id)
        if topic is None or not topic.close(status):
            return
        with self._lock:
            self._closed.append(topic)
            while len(self._closed) > self.retained_topics:
                old = self._closed.popleft()
                # a reopened job owns a new topic; leave that one alone
                if self._topics.get(old.job_id) is old:
                    del self._topics[old.job_id]
                    logger.debug(f"[BUS] Dropped closed topic for job {old.job_id}")
