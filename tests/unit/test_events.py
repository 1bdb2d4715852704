"""Unit tests for the event channel."""

from atlas.core.events import EventChannel
from atlas.core.models import TaskEvent


def test_subscribers_receive_events() -> None:
    channel = EventChannel()
    received: list[TaskEvent] = []
    channel.subscribe(received.append)

    channel.emit("task_created", "t-1", "acct-1", parent_task_id="p-1")

    assert len(received) == 1
    assert received[0].event_type == "task_created"
    assert received[0].task_id == "t-1"
    assert received[0].data == {"parent_task_id": "p-1"}


def test_unsubscribe() -> None:
    channel = EventChannel()
    received: list[TaskEvent] = []
    unsubscribe = channel.subscribe(received.append)

    unsubscribe()
    channel.emit("task_created", "t-1")

    assert received == []
    assert channel.subscriber_count == 0


def test_failing_subscriber_does_not_block_others() -> None:
    channel = EventChannel()
    received: list[TaskEvent] = []

    def broken(event: TaskEvent) -> None:
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(received.append)

    channel.emit("tree_cancelled", "t-1", cancelled=3)

    assert [e.data["cancelled"] for e in received] == [3]


def test_channels_are_independent() -> None:
    first, second = EventChannel(), EventChannel()
    received: list[TaskEvent] = []
    first.subscribe(received.append)

    second.emit("task_created", "t-1")

    assert received == []
