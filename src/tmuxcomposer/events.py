"""Structured event records and the emitter that fans them out to sinks.

Every record has the shape::

    {"event": str, "payload": {"context": {...}, "details": {...}},
     "timestamp": ISO-8601, "sessionId": uuid}

The emitter does not decide transport; sinks do (stdout JSON lines, the
WebSocket event server, a test list, ...).
"""

import asyncio
import inspect
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field

from .telemetry import get_logger

logger = get_logger(__name__)

# Event names produced by this package
SESSION_CHANGED = "session-changed"
WINDOW_CONTENT = "window-content"
WINDOW_AUTOMATION = "window-automation"
SESSION_CONTROL = "session-control"
SESSION_INVALIDATED = "session-invalidated"
ERROR = "error"


class EventPayload(BaseModel):
    """Payload: emitter context plus event-specific details."""

    context: dict[str, Any] = Field(default_factory=dict)
    details: dict[str, Any] = Field(default_factory=dict)


class Event(BaseModel):
    """A timestamped event record."""

    model_config = ConfigDict(populate_by_name=True)

    event: str
    payload: EventPayload
    timestamp: str
    session_id: str = Field(alias="sessionId")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


EventSink = Callable[[Event], Awaitable[None] | None]


class EventEmitter:
    """Builds event records and delivers them to registered sinks.

    Sinks may be plain callables or coroutine functions; coroutine sinks are
    scheduled on the running loop. A failing sink is logged and never
    affects the others or the caller.
    """

    def __init__(self, context: dict[str, Any] | None = None, session_id: str | None = None):
        self._context: dict[str, Any] = dict(context or {})
        self._session_id = session_id or str(uuid.uuid4())
        self._sinks: list[EventSink] = []
        self._pending: set[asyncio.Task] = set()

    @property
    def session_id(self) -> str:
        """Unique id of this emitter instance (one per process run)."""
        return self._session_id

    def update_context(self, **context: Any) -> None:
        """Merge fields into the context attached to every event."""
        self._context.update(context)

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def remove_sink(self, sink: EventSink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    def emit(self, event_name: str, details: dict[str, Any] | None = None) -> Event:
        """Create an event and deliver it to all sinks.

        Args:
            event_name: Event name, e.g. "session-changed"
            details: Event-specific data

        Returns:
            The emitted record.
        """
        event = Event(
            event=event_name,
            payload=EventPayload(context=dict(self._context), details=details or {}),
            timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            sessionId=self._session_id,
        )
        for sink in list(self._sinks):
            self._deliver(sink, event)
        return event

    def emit_error(self, message: str, error: BaseException | None = None) -> Event:
        """Emit an ``error`` event."""
        details: dict[str, Any] = {"message": message}
        if error is not None:
            details["error"] = str(error)
            details["errorType"] = type(error).__name__
        return self.emit(ERROR, details)

    def _deliver(self, sink: EventSink, event: Event) -> None:
        try:
            result = sink(event)
        except Exception as e:
            logger.error(f"[Events] Sink failed for {event.event}: {e}")
            return

        if inspect.isawaitable(result):
            try:
                task = asyncio.ensure_future(result)
            except RuntimeError as e:
                logger.error(f"[Events] No running loop for async sink: {e}")
                if inspect.iscoroutine(result):
                    result.close()
                return
            self._pending.add(task)
            task.add_done_callback(self._on_sink_done)

    def _on_sink_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[Events] Async sink failed: {task.exception()}")


def stdout_sink(event: Event) -> None:
    """Write one JSON line per event to stdout."""
    sys.stdout.write(event.to_json() + "\n")
    sys.stdout.flush()
