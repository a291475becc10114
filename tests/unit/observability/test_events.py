"""Unit tests for the sensor lifecycle event bus."""

from __future__ import annotations

from vigil.domain.models import SensorKind
from vigil.observability.events import EventBus, SensorEvent, SensorEventType


def test_subscribers_receive_matching_events_in_order() -> None:
    bus = EventBus()
    failures: list[SensorEvent] = []
    everything: list[SensorEvent] = []
    bus.subscribe(SensorEventType.FAILED, failures.append)
    bus.subscribe(None, everything.append)

    bus.emit(SensorEventType.REGISTERED, SensorKind.SYNTAX)
    bus.emit(SensorEventType.FAILED, SensorKind.SYNTAX, error="boom")

    assert [event.payload["error"] for event in failures] == ["boom"]
    assert [event.event_type for event in everything] == [
        SensorEventType.REGISTERED,
        SensorEventType.FAILED,
    ]


def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    received: list[SensorEvent] = []
    token = bus.subscribe(None, received.append)

    assert bus.unsubscribe(token)
    assert not bus.unsubscribe(token)
    bus.emit(SensorEventType.RECOVERED, SensorKind.DEPENDENCY)
    assert received == []


def test_failing_subscriber_does_not_block_others() -> None:
    bus = EventBus()
    received: list[SensorEvent] = []

    def explode(event: SensorEvent) -> None:
        raise RuntimeError("subscriber broke")

    bus.subscribe(None, explode)
    bus.subscribe(None, received.append)

    errors = bus.publish(
        SensorEvent(event_type=SensorEventType.FAILED, sensor_kind=SensorKind.SYNTAX)
    )

    assert len(received) == 1
    assert [error.error_type for error in errors] == ["RuntimeError"]
    assert bus.dispatch_errors()[0].message == "subscriber broke"


async def test_async_subscribers_are_drained() -> None:
    bus = EventBus()
    received: list[SensorKind] = []

    async def record(event: SensorEvent) -> None:
        received.append(event.sensor_kind)

    async def explode(event: SensorEvent) -> None:
        raise ValueError("late failure")

    bus.subscribe(SensorEventType.RESULT_AVAILABLE, record)
    bus.subscribe(SensorEventType.RESULT_AVAILABLE, explode)
    bus.emit(SensorEventType.RESULT_AVAILABLE, SensorKind.SYNTAX)
    await bus.drain_async()

    assert received == [SensorKind.SYNTAX]
    assert [error.message for error in bus.dispatch_errors()] == ["late failure"]


def test_replay_buffer_is_bounded_and_filterable() -> None:
    bus = EventBus(buffer_size=3)
    for kind in (SensorKind.SYNTAX, SensorKind.DEPENDENCY) * 2:
        bus.emit(SensorEventType.RESULT_AVAILABLE, kind)
    bus.emit(SensorEventType.FAILED, SensorKind.SYNTAX)

    replayed = bus.replay()
    assert len(replayed) == 3
    assert replayed[-1].event_type is SensorEventType.FAILED
    assert len(bus.replay(event_type=SensorEventType.RESULT_AVAILABLE)) == 2
    assert bus.replay(limit=1) == replayed[-1:]
    assert bus.replay(limit=0) == ()
