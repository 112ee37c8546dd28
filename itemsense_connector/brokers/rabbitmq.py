"""RabbitMQ broker adapter implementation (aio-pika)."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractIncomingMessage
from aio_pika.exceptions import AMQPError, ChannelNotFoundEntity

from itemsense_connector.brokers.protocols import (
    BrokerParameters,
    CloseListener,
    ErrorListener,
    FrameHandler,
)
from itemsense_connector.errors import (
    BrokerChannelError,
    BrokerConnectionError,
    ProvisioningTimeout,
    QueueMissing,
)
from itemsense_connector.models import RawFrame

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0
DEFAULT_OPERATION_TIMEOUT_SECONDS = 5.0


def _is_clean_close(exc: Any) -> bool:
    # aio-pika reports a locally requested close with CancelledError (class or instance).
    if exc is None or exc is asyncio.CancelledError:
        return True
    return isinstance(exc, asyncio.CancelledError)


class RabbitMQChannel:
    """Channel wrapper that feeds deliveries to one handler, strictly in order."""

    def __init__(self, channel: AbstractChannel, *, operation_timeout: float) -> None:
        self._channel = channel
        self._operation_timeout = operation_timeout
        self._error_listeners: list[ErrorListener] = []
        self._inbox: asyncio.Queue[AbstractIncomingMessage] = asyncio.Queue()
        self._inflight: dict[str, AbstractIncomingMessage] = {}
        self._pump: asyncio.Task[None] | None = None
        self._discarded = False
        channel.close_callbacks.add(self._on_close)

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def remove_error_listeners(self) -> None:
        self._error_listeners.clear()

    async def check_queue(self, queue_name: str) -> None:
        try:
            await asyncio.wait_for(
                self._channel.declare_queue(queue_name, passive=True),
                timeout=self._operation_timeout,
            )
        except ChannelNotFoundEntity as exc:
            # The broker closes the channel after a failed passive declare; that close is expected.
            self._discarded = True
            raise QueueMissing(queue_name) from exc
        except asyncio.TimeoutError as exc:
            raise ProvisioningTimeout(f"Timed out validating queue [ {queue_name} ]") from exc
        except AMQPError as exc:
            self._discarded = True
            raise BrokerChannelError(f"Unable to validate queue [ {queue_name} ]: {exc}") from exc

    async def consume(self, queue_name: str, handler: FrameHandler) -> str:
        try:
            queue = await self._channel.get_queue(queue_name, ensure=False)
            consumer_tag = await asyncio.wait_for(
                queue.consume(self._enqueue, no_ack=False),
                timeout=self._operation_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise BrokerChannelError(f"Timed out registering consumer on [ {queue_name} ]") from exc
        except AMQPError as exc:
            raise BrokerChannelError(f"Unable to consume from queue [ {queue_name} ]: {exc}") from exc
        self._pump = asyncio.create_task(self._drain(handler), name=f"amqp-consumer-{queue_name}")
        return str(consumer_tag)

    async def ack(self, frame: RawFrame) -> None:
        message = self._inflight.pop(frame.message_id, None)
        if message is None:
            return
        try:
            await message.ack()
        except AMQPError as exc:
            raise BrokerChannelError(f"Unable to ack message {frame.message_id}: {exc}") from exc

    async def close(self) -> None:
        self._discarded = True
        self._stop_pump()
        if not self._channel.is_closed:
            await self._channel.close()

    async def _enqueue(self, message: AbstractIncomingMessage) -> None:
        self._inbox.put_nowait(message)

    async def _drain(self, handler: FrameHandler) -> None:
        while True:
            message = await self._inbox.get()
            frame = self._to_frame(message)
            self._inflight[frame.message_id] = message
            try:
                await handler(frame)
            except Exception:
                logger.exception("Consumer handler failed for message %s", frame.message_id)

    def _stop_pump(self) -> None:
        if self._pump is not None:
            self._pump.cancel()
            self._pump = None
        self._inflight.clear()

    def _on_close(self, _sender: Any, exc: BaseException | None = None) -> None:
        self._stop_pump()
        # A failed passive declare closes the channel; check_queue reports it as QueueMissing.
        if self._discarded or _is_clean_close(exc) or isinstance(exc, ChannelNotFoundEntity):
            return
        error = BrokerChannelError(f"AMQP channel error: {exc}")
        for listener in list(self._error_listeners):
            listener(error)

    @staticmethod
    def _to_frame(message: AbstractIncomingMessage) -> RawFrame:
        timestamp = message.timestamp or datetime.now(timezone.utc)
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return RawFrame(
            message_id=str(message.delivery_tag),
            body=message.body,
            headers={str(key): str(value) for key, value in (message.headers or {}).items()},
            timestamp=timestamp,
            metadata={
                "routing_key": message.routing_key,
                "redelivered": message.redelivered,
                "consumer_tag": message.consumer_tag,
            },
        )


class RabbitMQConnection:
    def __init__(self, connection: AbstractConnection, *, operation_timeout: float) -> None:
        self._connection = connection
        self._operation_timeout = operation_timeout
        self._close_listeners: list[CloseListener] = []
        connection.close_callbacks.add(self._on_close)

    def add_close_listener(self, listener: CloseListener) -> None:
        self._close_listeners.append(listener)

    def remove_close_listeners(self) -> None:
        self._close_listeners.clear()

    async def channel(self) -> RabbitMQChannel:
        try:
            channel = await asyncio.wait_for(self._connection.channel(), timeout=self._operation_timeout)
        except (AMQPError, OSError, asyncio.TimeoutError) as exc:
            raise BrokerChannelError(f"Unable to open AMQP channel: {exc}") from exc
        return RabbitMQChannel(channel, operation_timeout=self._operation_timeout)

    async def close(self) -> None:
        if not self._connection.is_closed:
            await self._connection.close()

    def force_close(self) -> None:
        # aio-pika keeps the aiormq connection on ``transport``; closing its writer drops the socket.
        transport = getattr(self._connection, "transport", None)
        writer = getattr(getattr(transport, "connection", transport), "writer", None)
        if writer is not None:
            writer.close()
        logger.warning("Aborted AMQP transport after the close handshake timed out")

    def _on_close(self, _sender: Any, exc: BaseException | None = None) -> None:
        error = None if _is_clean_close(exc) else BrokerConnectionError(f"AMQP connection interrupted: {exc}")
        for listener in list(self._close_listeners):
            listener(error)


class RabbitMQBroker:
    """Broker adapter backed by RabbitMQ via aio-pika."""

    def __init__(
        self,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        operation_timeout: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.operation_timeout = operation_timeout

    async def connect(self, params: BrokerParameters) -> RabbitMQConnection:
        try:
            connection = await aio_pika.connect(
                host=params.host,
                port=params.port,
                login=params.username,
                password=params.password,
                virtualhost=params.virtual_host,
                timeout=self.connect_timeout,
                client_properties={"connection_name": params.connection_name},
                heartbeat=params.heartbeat,
            )
        except (AMQPError, OSError, asyncio.TimeoutError) as exc:
            raise BrokerConnectionError(
                f"Unable to connect to AMQP broker at {params.host}:{params.port}: {exc}"
            ) from exc
        logger.debug("Connected to AMQP broker %s:%s as %s", params.host, params.port, params.connection_name)
        return RabbitMQConnection(connection, operation_timeout=self.operation_timeout)
