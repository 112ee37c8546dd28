"""Connector data models: roles, states, event names and broker frames."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ConnectorEvent(str, Enum):
    ITEM_QUEUE_MESSAGE = "itemQueueMessage"
    HEALTH_QUEUE_MESSAGE = "healthQueueMessage"
    THRESHOLD_QUEUE_MESSAGE = "thresholdQueueMessage"
    ITEM_QUEUE_CONNECTED = "itemQueueConnected"
    HEALTH_QUEUE_CONNECTED = "healthQueueConnected"
    THRESHOLD_QUEUE_CONNECTED = "thresholdQueueConnected"
    CONNECTION_CLOSED = "connectionClosed"
    ERROR = "error"
    INFO = "info"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    PROVISIONING_QUEUE = "provisioning_queue"
    CONSUMING = "consuming"
    RETRYING = "retrying"
    SHUTTING_DOWN = "shutting_down"


class QueueRole(str, Enum):
    ITEM = "item"
    HEALTH = "health"
    THRESHOLD = "threshold"

    @property
    def message_event(self) -> ConnectorEvent:
        return _MESSAGE_EVENTS[self]

    @property
    def connected_event(self) -> ConnectorEvent:
        return _CONNECTED_EVENTS[self]

    @property
    def provisioning_path(self) -> str:
        return _PROVISIONING_PATHS[self]

    @property
    def timestamp_field(self) -> str:
        """Message field holding the event time checked by staleness filtering."""
        return "eventTime" if self is QueueRole.HEALTH else "observationTime"


_MESSAGE_EVENTS = {
    QueueRole.ITEM: ConnectorEvent.ITEM_QUEUE_MESSAGE,
    QueueRole.HEALTH: ConnectorEvent.HEALTH_QUEUE_MESSAGE,
    QueueRole.THRESHOLD: ConnectorEvent.THRESHOLD_QUEUE_MESSAGE,
}
_CONNECTED_EVENTS = {
    QueueRole.ITEM: ConnectorEvent.ITEM_QUEUE_CONNECTED,
    QueueRole.HEALTH: ConnectorEvent.HEALTH_QUEUE_CONNECTED,
    QueueRole.THRESHOLD: ConnectorEvent.THRESHOLD_QUEUE_CONNECTED,
}
_PROVISIONING_PATHS = {
    QueueRole.ITEM: "/itemsense/data/v1/items/queues",
    QueueRole.HEALTH: "/itemsense/health/v1/events/queues",
    QueueRole.THRESHOLD: "/itemsense/data/v1/items/queues/threshold",
}


@dataclass(slots=True)
class QueueHandle:
    """Queue name currently associated with one supervisor role."""

    role: QueueRole
    name: str = ""

    @property
    def provisioned(self) -> bool:
        return bool(self.name)

    def clear(self) -> None:
        self.name = ""


@dataclass(slots=True)
class RawFrame:
    """One frame delivered by a broker adapter, before decoding."""

    message_id: str
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)
