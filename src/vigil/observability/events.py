"""In-process sensor lifecycle event bus with a bounded replay buffer."""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Final

import structlog

from vigil.domain.models import SensorKind, utc_now

_DEFAULT_ERROR_BUFFER: Final[int] = 256


class SensorEventType(StrEnum):
    REGISTERED = "registered"
    UNREGISTERED = "unregistered"
    RESULT_AVAILABLE = "result_available"
    FAILED = "failed"
    RECOVERED = "recovered"


@dataclass(frozen=True, slots=True)
class SensorEvent:
    event_type: SensorEventType
    sensor_kind: SensorKind
    payload: Mapping[str, object] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utc_now)


Subscriber = Callable[[SensorEvent], object]


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber failure captured without interrupting the publisher."""

    event_type: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: SensorEventType | None
    callback: Subscriber


class EventBus:
    """Sync+async subscribers keyed by event type, with deterministic replay."""

    def __init__(self, *, buffer_size: int = 512) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")
        self._buffer = deque[SensorEvent](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._pending_async_tasks: set[asyncio.Task[object]] = set()
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1
        self._lock = threading.RLock()
        self._logger = structlog.get_logger(__name__)

    def subscribe(self, event_type: SensorEventType | None, callback: Subscriber) -> int:
        """Subscribe to one event type, or to all events when ``event_type`` is ``None``."""
        if not callable(callback):
            raise ValueError("callback must be callable")
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(token, event_type, callback)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def publish(self, event: SensorEvent) -> tuple[DispatchError, ...]:
        with self._lock:
            self._buffer.append(event)
            subscriptions = tuple(self._subscriptions.values())

        errors: list[DispatchError] = []
        for subscription in subscriptions:
            if subscription.event_type is not None and subscription.event_type != event.event_type:
                continue
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    self._schedule(result, event, subscription.callback)
            except Exception as exc:  # noqa: BLE001
                errors.append(_dispatch_error(event, subscription.callback, exc))

        if errors:
            with self._lock:
                self._dispatch_errors.extend(errors)
            for error in errors:
                self._logger.warning(
                    "event_subscriber_failed",
                    event_type=error.event_type,
                    target=error.target,
                    error=error.message,
                )
        return tuple(errors)

    def emit(
        self,
        event_type: SensorEventType,
        sensor_kind: SensorKind,
        **payload: object,
    ) -> SensorEvent:
        event = SensorEvent(event_type=event_type, sensor_kind=sensor_kind, payload=payload)
        self.publish(event)
        return event

    async def drain_async(self) -> None:
        """Await subscriber coroutines scheduled by ``publish``."""
        with self._lock:
            pending = tuple(self._pending_async_tasks)
            self._pending_async_tasks.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def replay(
        self,
        *,
        event_type: SensorEventType | None = None,
        limit: int | None = None,
    ) -> tuple[SensorEvent, ...]:
        with self._lock:
            events = [
                event
                for event in self._buffer
                if event_type is None or event.event_type == event_type
            ]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return tuple(events)

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        with self._lock:
            return tuple(self._dispatch_errors)

    def _schedule(self, awaitable: object, event: SensorEvent, callback: Subscriber) -> None:
        loop = asyncio.get_running_loop()
        task: asyncio.Task[object] = loop.create_task(_await(awaitable))
        with self._lock:
            self._pending_async_tasks.add(task)

        def _done(done: asyncio.Task[object]) -> None:
            with self._lock:
                self._pending_async_tasks.discard(done)
            if done.cancelled():
                return
            exc = done.exception()
            if exc is not None and isinstance(exc, Exception):
                error = _dispatch_error(event, callback, exc)
                with self._lock:
                    self._dispatch_errors.append(error)

        task.add_done_callback(_done)


async def _await(awaitable: object) -> object:
    return await awaitable  # type: ignore[misc]


def _dispatch_error(event: SensorEvent, callback: Subscriber, exc: Exception) -> DispatchError:
    return DispatchError(
        event_type=event.event_type.value,
        target=getattr(callback, "__qualname__", repr(callback)),
        error_type=type(exc).__name__,
        message=str(exc),
    )


__all__ = [
    "DispatchError",
    "EventBus",
    "SensorEvent",
    "SensorEventType",
    "Subscriber",
]
