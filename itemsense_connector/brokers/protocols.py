"""Broker adapter protocol shared by the supervisor and concrete adapters."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from itemsense_connector.config import ConnectorConfig
from itemsense_connector.models import QueueRole, RawFrame

CloseListener = Callable[[BaseException | None], None]
ErrorListener = Callable[[BaseException], None]
FrameHandler = Callable[[RawFrame], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class BrokerParameters:
    """AMQP session parameters for one supervisor connection."""

    host: str
    port: int
    username: str
    password: str = field(repr=False)
    virtual_host: str = "/"
    heartbeat: int = 30
    connection_name: str = ""

    @classmethod
    def from_config(cls, config: ConnectorConfig, role: QueueRole) -> BrokerParameters:
        return cls(
            host=config.hostname,
            port=config.amqp_port,
            username=config.username,
            password=config.password,
            virtual_host="/",
            heartbeat=config.heartbeat_seconds,
            connection_name=f"{config.id}:{role.value}",
        )


class BrokerChannel(Protocol):
    """One logical session used to validate and consume a queue."""

    def add_error_listener(self, listener: ErrorListener) -> None:
        """Register a callback for channel-level faults."""

    def remove_error_listeners(self) -> None:
        """Detach every error listener."""

    async def check_queue(self, queue_name: str) -> None:
        """Raise QueueMissing when the queue does not exist on the broker."""

    async def consume(self, queue_name: str, handler: FrameHandler) -> str:
        """Register a consumer; frames are handed to ``handler`` one at a time, in order."""

    async def ack(self, frame: RawFrame) -> None:
        """Acknowledge a delivered frame."""

    async def close(self) -> None:
        """Close the channel."""


class BrokerConnection(Protocol):
    """Broker connection owned by exactly one supervisor."""

    def add_close_listener(self, listener: CloseListener) -> None:
        """Register a callback invoked with the error, or None for a clean close."""

    def remove_close_listeners(self) -> None:
        """Detach every close listener."""

    async def channel(self) -> BrokerChannel:
        """Open a new channel on this connection."""

    async def close(self) -> None:
        """Close the connection."""

    def force_close(self) -> None:
        """Abort the underlying transport without waiting for the close handshake."""


class BrokerAdapter(Protocol):
    """Factory for broker connections."""

    async def connect(self, params: BrokerParameters) -> BrokerConnection:
        """Open a connection, raising BrokerConnectionError on failure."""
