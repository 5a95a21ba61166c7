from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger("backupmon.events")

Listener = Callable[[Any], Any]


class StreamEvent(str, Enum):
    """Events emitted by the push channel."""

    connection = "connection"
    connection_established = "connection_established"
    configuration_saved = "configuration_saved"
    configuration_data = "configuration_data"
    backup_started = "backup_started"
    backup_progress = "backup_progress"
    backup_completed = "backup_completed"
    backup_failed = "backup_failed"
    job_status_data = "job_status_data"
    ssh_test_result = "ssh_test_result"
    error = "error"
    max_reconnect_attempts_reached = "max_reconnect_attempts_reached"


# Inbound envelope type -> event name. Anything else is dropped.
MESSAGE_EVENTS: dict[str, StreamEvent] = {
    "CONNECTION_ESTABLISHED": StreamEvent.connection_established,
    "CONFIGURATION_SAVED": StreamEvent.configuration_saved,
    "CONFIGURATION_DATA": StreamEvent.configuration_data,
    "BACKUP_STARTED": StreamEvent.backup_started,
    "BACKUP_PROGRESS": StreamEvent.backup_progress,
    "BACKUP_COMPLETED": StreamEvent.backup_completed,
    "BACKUP_FAILED": StreamEvent.backup_failed,
    "JOB_STATUS_DATA": StreamEvent.job_status_data,
    "SSH_TEST_RESULT": StreamEvent.ssh_test_result,
    "ERROR": StreamEvent.error,
}


@dataclass(frozen=True)
class ListenerHandle:
    """Returned by EventBus.on(); removes exactly that registration."""

    bus: EventBus
    event: str
    callback: Listener

    def remove(self) -> bool:
        return self.bus.off(self.event, self.callback)


class EventBus:
    """Event name -> ordered callbacks, bound to the owner's lifetime."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._pending: set[asyncio.Task[Any]] = set()

    def on(self, event: str | StreamEvent, callback: Listener) -> ListenerHandle:
        """Register a callback."""
        key = _key(event)
        self._listeners.setdefault(key, []).append(callback)
        return ListenerHandle(self, key, callback)

    def off(self, event: str | StreamEvent, callback: Listener) -> bool:
        """Remove the first registration of callback for event."""
        callbacks = self._listeners.get(_key(event))
        if not callbacks or callback not in callbacks:
            return False
        callbacks.remove(callback)
        return True

    def emit(self, event: str | StreamEvent, data: Any = None) -> int:
        """Invoke every callback in registration order; returns how many ran cleanly."""
        key = _key(event)
        ok = 0
        for callback in list(self._listeners.get(key, ())):
            try:
                result = callback(data)
                if inspect.isawaitable(result):
                    self._schedule(key, result)
            except Exception:
                logger.exception(f"Listener for '{key}' raised")
                continue
            ok += 1
        return ok

    def listener_count(self, event: str | StreamEvent) -> int:
        return len(self._listeners.get(_key(event), ()))

    def clear(self) -> None:
        """Drop all listeners. Coroutine listeners already scheduled run to completion."""
        self._listeners.clear()

    def _schedule(self, key: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"Async listener for '{key}' failed: {t.exception()!r}")

        task.add_done_callback(_done)


def _key(event: str | StreamEvent) -> str:
    return event.value if isinstance(event, StreamEvent) else event
