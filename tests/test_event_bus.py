import asyncio

import pytest

from vampire.event_bus import LogBus, LogEvent, TooManySubscribersError


@pytest.mark.asyncio
async def test_log_bus_pub_sub():
    bus = LogBus()
    bus.open(7)
    sub = bus.subscribe(7)

    # Emit a couple of lines, then finish the job
    bus.publish(7, "[1/5] Reading issue #42...")
    bus.publish(7, "  Title:  Fix the login button")
    bus.close(7, "completed")

    received: list[LogEvent] = [event async for event in sub]

    assert [e.kind for e in received] == ["log", "log", "done"]
    assert received[0].data == "[1/5] Reading issue #42..."
    assert received[-1].data == "completed"

    # Verify auto-generated fields
    event = received[0]
    assert event.job_id == 7
    assert isinstance(event.event_id, str)
    assert event.timestamp is not None


@pytest.mark.asyncio
async def test_every_subscriber_sees_lines_in_order():
    bus = LogBus()
    bus.open(1)
    first = bus.subscribe(1)
    second = bus.subscribe(1)

    for n in range(5):
        bus.publish(1, f"line {n}")
    bus.close(1, "failed")

    for sub in (first, second):
        data = [event.data async for event in sub]
        assert data == ["line 0", "line 1", "line 2", "line 3", "line 4", "failed"]


@pytest.mark.asyncio
async def test_late_subscriber_gets_done_immediately():
    bus = LogBus()
    bus.open(3)
    bus.publish(3, "never seen")
    bus.close(3, "cancelled")

    sub = bus.subscribe(3)
    event = await asyncio.wait_for(sub.get(), timeout=1)
    assert event.kind == "done"
    assert event.data == "cancelled"


@pytest.mark.asyncio
async def test_lines_before_subscribe_are_not_replayed_by_default():
    bus = LogBus()
    topic = bus.open(4)
    topic.publish("early")
    sub = topic.subscribe()
    topic.publish("late")
    topic.close("completed")

    assert [e.data async for e in sub] == ["late", "completed"]


@pytest.mark.asyncio
async def test_replay_delivers_history_first():
    bus = LogBus(history_lines=2)
    topic = bus.open(5)
    for line in ("a", "b", "c"):
        topic.publish(line)
    sub = topic.subscribe(replay=True)
    topic.publish("d")
    topic.close("completed")

    assert [e.data async for e in sub] == ["b", "c", "d", "completed"]


def test_subscriber_limit():
    bus = LogBus(max_subscribers=2)
    topic = bus.open(6)
    topic.subscribe()
    topic.subscribe()
    with pytest.raises(TooManySubscribersError):
        topic.subscribe()


def test_unsubscribe_frees_a_slot():
    bus = LogBus(max_subscribers=1)
    topic = bus.open(8)
    sub = topic.subscribe()
    sub.close()
    assert topic.subscriber_count == 0
    topic.subscribe()


def test_close_is_once_only_and_drops_later_lines():
    bus = LogBus()
    topic = bus.open(9)
    sub = topic.subscribe()
    assert topic.close("completed") is True
    assert topic.close("failed") is False
    topic.publish("after the end")

    assert topic.status == "completed"
    assert sub._queue.qsize() == 1


def test_subscribe_unknown_job():
    with pytest.raises(KeyError):
        LogBus().subscribe(404)


def test_only_recent_closed_topics_are_kept():
    bus = LogBus(retained_topics=2)
    for job_id in (1, 2, 3):
        bus.open(job_id)
        bus.close(job_id, "completed")

    assert bus.topic(1) is None
    assert bus.topic(2).status == "completed"
    assert bus.topic(3).status == "completed"
    with pytest.raises(KeyError):
        bus.subscribe(1)


def test_running_topics_are_never_dropped():
    bus = LogBus(retained_topics=1)
    running = bus.open(1)
    for job_id in (2, 3, 4):
        bus.open(job_id)
        bus.close(job_id, "failed")

    assert bus.topic(1) is running
    assert not running.closed
    assert [bus.topic(n) is not None for n in (2, 3, 4)] == [False, False, True]


def test_reopened_job_keeps_its_new_topic():
    bus = LogBus(retained_topics=1)
    bus.open(1)
    bus.close(1, "failed")
    rerun = bus.open(1)
    bus.open(2)
    bus.close(2, "completed")

    assert bus.topic(1) is rerun
    rerun.publish("still going")
    assert not rerun.closed
