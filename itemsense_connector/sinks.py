"""Event sinks: deliver connector events in-process or across a process boundary."""

from __future__ import annotations

import json
import logging
import sys
from collections import defaultdict
from collections.abc import Callable
from typing import Any, Protocol, TextIO

from itemsense_connector.errors import ConnectorError
from itemsense_connector.models import ConnectorEvent

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class EventSink(Protocol):
    """Destination for connector events."""

    def emit(self, event: ConnectorEvent, data: Any) -> None:
        """Deliver one event; must not raise into the caller."""


def _coerce_event(event: ConnectorEvent | str) -> ConnectorEvent:
    return event if isinstance(event, ConnectorEvent) else ConnectorEvent(event)


class LocalEventSink:
    """Synchronous, FIFO delivery to listeners registered in this process."""

    def __init__(self) -> None:
        self._listeners: dict[ConnectorEvent, list[tuple[Listener, bool]]] = defaultdict(list)

    def on(self, event: ConnectorEvent | str, listener: Listener) -> None:
        self._listeners[_coerce_event(event)].append((listener, False))

    def once(self, event: ConnectorEvent | str, listener: Listener) -> None:
        self._listeners[_coerce_event(event)].append((listener, True))

    def off(self, event: ConnectorEvent | str, listener: Listener) -> None:
        """Remove the earliest registration of ``listener`` for ``event``."""
        entries = self._listeners.get(_coerce_event(event), [])
        for index, (registered, _) in enumerate(entries):
            if registered == listener:
                del entries[index]
                return

    def listener_count(self, event: ConnectorEvent | str) -> int:
        return len(self._listeners.get(_coerce_event(event), []))

    def emit(self, event: ConnectorEvent, data: Any) -> None:
        entries = self._listeners.get(event)
        if not entries:
            return
        # Snapshot so listeners may unregister themselves while being called.
        snapshot = list(entries)
        entries[:] = [entry for entry in entries if not entry[1]]
        for listener, _ in snapshot:
            try:
                listener(data)
            except Exception:
                logger.exception("Listener for %s failed", event.value)


def serialize_event_data(data: Any) -> Any:
    """Convert event payloads to JSON-compatible values."""
    if isinstance(data, ConnectorError):
        return data.to_payload()
    if isinstance(data, BaseException):
        return {"kind": type(data).__name__, "message": str(data)}
    return data


class StreamEventSink:
    """Serialize events as ``{"event", "data"}`` JSON lines onto a text stream.

    Used when the connector runs as a child process: the parent reads one
    message per line from the child's stdout. Writes are flushed per event,
    so per-stream FIFO order is preserved.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdout

    def emit(self, event: ConnectorEvent, data: Any) -> None:
        line = json.dumps({"event": event.value, "data": serialize_event_data(data)}, default=str)
        try:
            self._stream.write(line + "\n")
            self._stream.flush()
        except (OSError, ValueError):
            logger.exception("Failed to write %s event to output stream", event.value)
