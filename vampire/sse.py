"""
Server-sent-events framing for a job's live log.

The HTTP layer owns the response; this only turns a job's log topic into
`text/event-stream` frames:

    data: "<json-encoded line>"\n\n      one per log line
    event: done\ndata: <status>\n\n      once, then the stream ends
"""

from __future__ import annotations

import json
from typing import AsyncIterator

from vampire.event_bus import LogBus, LogEvent
from vampire.models import JobStatus


def format_event(event: LogEvent) -> str:
    if event.kind == "done":
        return f"event: done\ndata: {event.data or 'done'}\n\n"
    return f"data: {json.dumps(event.data)}\n\n"


async def stream_job_log(
    bus: LogBus,
    job_id: int,
    status: JobStatus,
    replay: bool = False,
) -> AsyncIterator[str]:
    """
    Frames for one observer. `status` is the job's persisted status at
    connect time; a job that is already terminal gets only the done frame.
    """
    topic = bus.topic(job_id)
    if status.terminal or topic is None:
        final = topic.status if topic is not None and topic.closed else status.value
        yield f"event: done\ndata: {final}\n\n"
        return

    subscription = topic.subscribe(replay=replay)
    try:
        async for event in subscription:
            yield format_event(event)
    finally:
        subscription.close()
