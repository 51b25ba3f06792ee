"""
生命周期事件总线测试
"""
import pytest

from automation_engine.integrations.event_bus import (
    EventBus,
    EXECUTION_STARTED,
    EXECUTION_COMPLETED,
)


@pytest.mark.asyncio
async def test_history_is_bounded_and_newest_first():
    bus = EventBus(history_size=3)

    for index in range(5):
        await bus.publish(EXECUTION_STARTED, {"executionId": f"exec-{index}"})

    assert [event.execution_id for event in bus.recent()] == ["exec-4", "exec-3", "exec-2"]
    assert len(bus.recent(limit=1)) == 1


@pytest.mark.asyncio
async def test_recent_filters_by_execution():
    bus = EventBus()
    await bus.publish(EXECUTION_STARTED, {"executionId": "a"})
    await bus.publish(EXECUTION_STARTED, {"executionId": "b"})
    await bus.publish(EXECUTION_COMPLETED, {"executionId": "a"})

    events = bus.recent(execution_id="a")

    assert [event.topic for event in events] == [EXECUTION_COMPLETED, EXECUTION_STARTED]


@pytest.mark.asyncio
async def test_topic_and_wildcard_subscribers():
    bus = EventBus()
    specific, everything = [], []

    def on_completed(event):
        specific.append(event.topic)

    async def on_any(event):
        everything.append(event.topic)

    bus.subscribe(EXECUTION_COMPLETED, on_completed)
    bus.subscribe("*", on_any)

    await bus.publish(EXECUTION_STARTED, {})
    await bus.publish(EXECUTION_COMPLETED, {})

    assert specific == [EXECUTION_COMPLETED]
    assert everything == [EXECUTION_STARTED, EXECUTION_COMPLETED]

    bus.unsubscribe(EXECUTION_COMPLETED, on_completed)
    await bus.publish(EXECUTION_COMPLETED, {})
    assert specific == [EXECUTION_COMPLETED]
    assert EXECUTION_COMPLETED not in bus.subscribers


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("subscriber down")

    bus.subscribe(EXECUTION_STARTED, broken)
    bus.subscribe(EXECUTION_STARTED, lambda event: received.append(event))

    event = await bus.publish(EXECUTION_STARTED, {"executionId": "x"})

    assert received == [event]
    assert event.to_dict()["payload"] == {"executionId": "x"}
    assert event.to_dict()["timestamp"].startswith(str(event.timestamp.year))
