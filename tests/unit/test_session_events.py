"""Tests for SessionEventStream."""

import asyncio

import pytest

from makyno.core.events import SessionEventStream, SessionEventType


async def _collect(stream):
    return [event async for event in stream.subscribe()]


def test_publish_assigns_sequence():
    stream = SessionEventStream("feat-1")
    first = stream.publish(SessionEventType.MESSAGE, role="assistant")
    second = stream.publish(SessionEventType.TOOL_STATE, state="executing")

    assert (first.sequence, second.sequence) == (0, 1)
    assert second.data == {"state": "executing"}


def test_terminal_event_closes_stream():
    stream = SessionEventStream("feat-1")
    stream.publish(SessionEventType.FINISHED, text="done")

    assert stream.closed
    with pytest.raises(RuntimeError):
        stream.publish(SessionEventType.MESSAGE)


@pytest.mark.asyncio
async def test_late_subscriber_replays_everything():
    stream = SessionEventStream("feat-1")
    stream.publish(SessionEventType.MESSAGE, role="assistant")
    stream.publish(SessionEventType.FINISHED, text="done")

    events = await _collect(stream)

    assert [e.type for e in events] == [SessionEventType.MESSAGE, SessionEventType.FINISHED]


@pytest.mark.asyncio
async def test_each_observer_gets_full_sequence():
    """Observers attached at different times see identical sequences."""
    stream = SessionEventStream("feat-1")
    early = asyncio.create_task(_collect(stream))
    await asyncio.sleep(0)

    stream.publish(SessionEventType.MESSAGE, n=1)
    await asyncio.sleep(0)
    late = asyncio.create_task(_collect(stream))
    stream.publish(SessionEventType.MESSAGE, n=2)
    stream.publish(SessionEventType.CANCELLED)

    early_events = await asyncio.wait_for(early, timeout=1)
    late_events = await asyncio.wait_for(late, timeout=1)

    assert [e.sequence for e in early_events] == [0, 1, 2]
    assert [e.sequence for e in late_events] == [0, 1, 2]


@pytest.mark.asyncio
async def test_close_ends_subscription():
    stream = SessionEventStream("feat-1")
    reader = asyncio.create_task(_collect(stream))
    await asyncio.sleep(0)

    stream.close()

    assert await asyncio.wait_for(reader, timeout=1) == []
