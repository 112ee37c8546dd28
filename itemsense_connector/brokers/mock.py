"""In-memory broker adapter for local testing and CI."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from typing import Any

from itemsense_connector.brokers.protocols import (
    BrokerParameters,
    CloseListener,
    ErrorListener,
    FrameHandler,
)
from itemsense_connector.errors import BrokerChannelError, BrokerConnectionError, QueueMissing
from itemsense_connector.models import RawFrame

logger = logging.getLogger(__name__)


class MockChannel:
    def __init__(self, connection: MockConnection) -> None:
        self._connection = connection
        self._error_listeners: list[ErrorListener] = []
        self._inbox: asyncio.Queue[RawFrame] = asyncio.Queue()
        self._pump: asyncio.Task[None] | None = None
        self.queue_name: str | None = None
        self.closed = False
        self.close_calls = 0

    @property
    def broker(self) -> MockBroker:
        return self._connection.broker

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def remove_error_listeners(self) -> None:
        self._error_listeners.clear()

    def error_listener_count(self) -> int:
        return len(self._error_listeners)

    async def check_queue(self, queue_name: str) -> None:
        await asyncio.sleep(0)
        if queue_name not in self.broker.queues:
            # A failed passive declare closes the channel, as on a real broker.
            self._shutdown()
            raise QueueMissing(queue_name)

    async def consume(self, queue_name: str, handler: FrameHandler) -> str:
        await asyncio.sleep(0)
        if self.closed:
            raise BrokerChannelError("Channel is closed")
        if self.broker.consume_failures > 0:
            self.broker.consume_failures -= 1
            raise BrokerChannelError(f"Unable to consume from queue [ {queue_name} ]")
        if queue_name not in self.broker.queues:
            raise BrokerChannelError(f"NOT_FOUND - no queue '{queue_name}'")
        self.queue_name = queue_name
        self._pump = asyncio.create_task(self._drain(handler), name=f"mock-consumer-{queue_name}")
        return f"ctag-{queue_name}"

    async def ack(self, frame: RawFrame) -> None:
        self.broker.acked.append(frame.message_id)

    async def close(self) -> None:
        self.close_calls += 1
        if self.broker.hang_on_close:
            await asyncio.Event().wait()
        self._shutdown()

    def enqueue(self, frame: RawFrame) -> None:
        self._inbox.put_nowait(frame)

    async def join(self) -> None:
        await self._inbox.join()

    def raise_error(self, error: BaseException) -> None:
        """Simulate a channel-level fault reported by the broker."""
        for listener in list(self._error_listeners):
            listener(error)

    def _shutdown(self) -> None:
        self.closed = True
        if self._pump is not None:
            self._pump.cancel()
            self._pump = None

    async def _drain(self, handler: FrameHandler) -> None:
        while True:
            frame = await self._inbox.get()
            try:
                await handler(frame)
            except Exception:
                logger.exception("Mock consumer handler failed for frame %s", frame.message_id)
            finally:
                self._inbox.task_done()


class MockConnection:
    def __init__(self, broker: MockBroker, params: BrokerParameters) -> None:
        self.broker = broker
        self.params = params
        self.channels: list[MockChannel] = []
        self._close_listeners: list[CloseListener] = []
        self.closed = False
        self.close_calls = 0
        self.force_closed = False

    def add_close_listener(self, listener: CloseListener) -> None:
        self._close_listeners.append(listener)

    def remove_close_listeners(self) -> None:
        self._close_listeners.clear()

    def close_listener_count(self) -> int:
        return len(self._close_listeners)

    async def channel(self) -> MockChannel:
        await asyncio.sleep(0)
        if self.closed:
            raise BrokerChannelError("Connection is closed")
        if self.broker.channel_failures > 0:
            self.broker.channel_failures -= 1
            raise BrokerChannelError("Unable to open channel")
        channel = MockChannel(self)
        self.channels.append(channel)
        return channel

    async def close(self) -> None:
        self.close_calls += 1
        if self.broker.hang_on_close:
            await asyncio.Event().wait()
        self._teardown(None)

    def force_close(self) -> None:
        self.force_closed = True
        self._teardown(None)

    def fail(self, error: BaseException | None = None) -> None:
        """Simulate the broker dropping this connection."""
        self._teardown(error or BrokerConnectionError("AMQP connection interrupted."))

    def close_remotely(self) -> None:
        """Simulate a clean, error-free close initiated outside this process."""
        self._teardown(None)

    def _teardown(self, error: BaseException | None) -> None:
        if self.closed:
            return
        self.closed = True
        for channel in self.channels:
            channel._shutdown()
        for listener in list(self._close_listeners):
            listener(error)


class MockBroker:
    """Simple in-memory broker implementing the adapter semantics for tests."""

    def __init__(self) -> None:
        self.queues: set[str] = set()
        self.connections: deque[MockConnection] = deque()
        self.connect_params: list[BrokerParameters] = []
        self.acked: list[str] = []
        self.connect_failures = 0
        self.channel_failures = 0
        self.consume_failures = 0
        self.hang_on_close = False
        self._sequence = 0

    async def connect(self, params: BrokerParameters) -> MockConnection:
        await asyncio.sleep(0)
        self.connect_params.append(params)
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise BrokerConnectionError(f"Unable to connect to AMQP broker at {params.host}:{params.port}")
        connection = MockConnection(self, params)
        self.connections.append(connection)
        return connection

    def add_queue(self, name: str) -> None:
        self.queues.add(name)

    def remove_queue(self, name: str) -> None:
        self.queues.discard(name)

    @property
    def latest_connection(self) -> MockConnection | None:
        return self.connections[-1] if self.connections else None

    def consumers(self, queue_name: str) -> list[MockChannel]:
        return [
            channel
            for connection in self.connections
            if not connection.closed
            for channel in connection.channels
            if not channel.closed and channel.queue_name == queue_name
        ]

    def publish(self, queue_name: str, body: bytes | dict[str, Any]) -> None:
        """Deliver a frame to every active consumer of ``queue_name``."""
        payload = json.dumps(body).encode("utf-8") if isinstance(body, dict) else body
        self._sequence += 1
        for channel in self.consumers(queue_name):
            channel.enqueue(RawFrame(message_id=str(self._sequence), body=payload))

    async def drain(self) -> None:
        """Wait until every delivered frame has been handled."""
        for connection in list(self.connections):
            for channel in connection.channels:
                if not channel.closed:
                    await channel.join()
