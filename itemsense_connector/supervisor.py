"""Per-role connection supervision: connect, provision, consume, fail, back off, retry."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from itemsense_connector.brokers.protocols import (
    BrokerAdapter,
    BrokerChannel,
    BrokerConnection,
    BrokerParameters,
)
from itemsense_connector.config import ConnectorConfig
from itemsense_connector.errors import ConnectorError, DecodeError, QueueMissing
from itemsense_connector.filters import MessageAdmissionFilter
from itemsense_connector.models import ConnectionState, ConnectorEvent, QueueHandle, QueueRole, RawFrame
from itemsense_connector.parsers import JSONParser
from itemsense_connector.provisioning import ProvisioningClient, QueueProvisioningClient
from itemsense_connector.scheduling import RetryTimer, Sleep
from itemsense_connector.sinks import EventSink

logger = logging.getLogger(__name__)

ProvisioningFactory = Callable[[ConnectorConfig], ProvisioningClient]
Clock = Callable[[], datetime]

DEFAULT_SHUTDOWN_GRACE_SECONDS = 5.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionSupervisor:
    """Keep one queue role consuming, re-provisioning after every connection loss.

    Any connection loss is treated as "queue state unknown": the broker
    cannot tell a network blip from a server restart that destroyed the
    queue's backing storage, and consuming from a dead queue name yields
    silence rather than an error. The remembered queue name is therefore
    cleared and the next attempt provisions a fresh queue. Supplying an old
    name to a new ``start()`` is the manual override.
    """

    def __init__(
        self,
        role: QueueRole,
        *,
        sink: EventSink,
        broker: BrokerAdapter,
        provisioning_factory: ProvisioningFactory | None = None,
        parser: JSONParser | None = None,
        sleep: Sleep | None = None,
        clock: Clock | None = None,
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE_SECONDS,
    ) -> None:
        self.role = role
        self.shutdown_grace = shutdown_grace
        self._sink = sink
        self._broker = broker
        self._provisioning_factory: ProvisioningFactory = provisioning_factory or QueueProvisioningClient.from_config
        self._parser = parser or JSONParser()
        self._clock: Clock = clock or _utcnow
        self._retry_timer = RetryTimer(name=f"{role.value}-queue", sleep=sleep)

        self._config: ConnectorConfig | None = None
        self._provisioning: ProvisioningClient | None = None
        self._filter = MessageAdmissionFilter(timestamp_field=role.timestamp_field)
        self._handle = QueueHandle(role)
        self._state = ConnectionState.DISCONNECTED
        self._started = False
        self._connection: BrokerConnection | None = None
        self._channel: BrokerChannel | None = None
        self._attempt_task: asyncio.Task[None] | None = None
        self._generation = 0
        self._attempts = 0
        self._delivered_count = 0
        self._filtered_count = 0
        self._decode_errors = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def queue_name(self) -> str:
        return self._handle.name

    @property
    def started(self) -> bool:
        return self._started

    @property
    def retry_timer(self) -> RetryTimer:
        return self._retry_timer

    async def start(self, config: ConnectorConfig) -> None:
        """Begin supervising this role. A no-op when already started."""
        if self._started:
            return
        self._started = True
        self._config = config
        self._provisioning = self._provisioning_factory(config)
        self._filter = MessageAdmissionFilter.from_config(config, self.role)
        self._handle.name = config.queue_name_for(self.role)
        self._begin_attempt()

    async def shutdown(self) -> None:
        """Stop retrying and release the channel and connection. Idempotent."""
        if not self._started or self._state is ConnectionState.SHUTTING_DOWN:
            return
        self._set_state(ConnectionState.SHUTTING_DOWN)
        self._retry_timer.cancel()
        await self._cancel_attempt()

        channel, connection = self._channel, self._connection
        self._channel = None
        self._connection = None
        if channel is not None:
            self._emit(ConnectorEvent.INFO, f"Closing {self.role.value} queue channel.")
            channel.remove_error_listeners()
            await self._close_quietly(channel.close, "channel")
        if connection is not None:
            self._emit(ConnectorEvent.INFO, f"Closing {self.role.value} queue connection.")
            connection.remove_close_listeners()
            await self._close_quietly(connection.close, "connection", connection.force_close)

        self._handle.clear()
        self._started = False
        self._set_state(ConnectionState.DISCONNECTED)

    async def health_check(self) -> dict[str, Any]:
        """Return supervisor state and basic counters."""
        return {
            "role": self.role.value,
            "state": self._state.value,
            "started": self._started,
            "queue": self._handle.name,
            "retry_pending": self._retry_timer.pending,
            "attempts": self._attempts,
            "retries": self._retry_timer.scheduled_count,
            "delivered_count": self._delivered_count,
            "filtered_count": self._filtered_count,
            "decode_errors": self._decode_errors,
        }

    def _begin_attempt(self) -> None:
        if not self._started or self._state is ConnectionState.SHUTTING_DOWN:
            return
        previous = self._attempt_task
        if previous is not None and not previous.done():
            previous.cancel()
        self._attempt_task = asyncio.create_task(self._run_attempt(), name=f"{self.role.value}-queue-connect")

    async def _run_attempt(self) -> None:
        try:
            await self._attempt()
        except ConnectorError as exc:
            logger.warning("%s queue connect attempt failed: %s", self.role.value, exc)
            await self._release_resources()
            self._fail(exc)
        except Exception as exc:
            logger.exception("Unexpected failure connecting %s queue", self.role.value)
            await self._release_resources()
            self._fail(exc)

    async def _attempt(self) -> None:
        assert self._config is not None and self._provisioning is not None
        self._attempts += 1
        self._set_state(ConnectionState.CONNECTING)

        await self._provisioning.check_reachable()
        connection = await self._broker.connect(BrokerParameters.from_config(self._config, self.role))
        self._generation += 1
        generation = self._generation
        self._connection = connection
        connection.add_close_listener(lambda error: self._on_connection_closed(generation, error))

        self._set_state(ConnectionState.PROVISIONING_QUEUE)
        self._channel = await self._open_channel(connection)
        queue_name = await self._resolve_queue(connection)
        channel = self._channel
        assert channel is not None
        await channel.consume(queue_name, lambda frame: self._on_frame(channel, frame))

        self._set_state(ConnectionState.CONSUMING)
        logger.info("Consuming %s queue %s", self.role.value, queue_name)
        self._emit(self.role.connected_event, queue_name)

    async def _open_channel(self, connection: BrokerConnection) -> BrokerChannel:
        channel = await connection.channel()
        channel.add_error_listener(self._on_channel_error)
        return channel

    async def _resolve_queue(self, connection: BrokerConnection) -> str:
        assert self._channel is not None
        if not self._handle.provisioned:
            return await self._provision()
        name = self._handle.name
        try:
            await self._channel.check_queue(name)
            return name
        except QueueMissing as exc:
            self._emit(ConnectorEvent.ERROR, exc)

        name = await self._provision()
        # The failed passive declare closed the old channel; detach it before replacing the reference.
        stale = self._channel
        stale.remove_error_listeners()
        self._channel = None
        await self._close_quietly(stale.close, "channel")
        self._channel = await self._open_channel(connection)
        return name

    async def _provision(self) -> str:
        assert self._config is not None and self._provisioning is not None
        name = await self._provisioning.provision_queue(self.role, self._config.queue_filter_for(self.role))
        self._handle.name = name
        return name

    async def _on_frame(self, channel: BrokerChannel, frame: RawFrame) -> None:
        # Ack precedes filtering: a fault between ack and delivery loses that message.
        try:
            await channel.ack(frame)
        except ConnectorError as exc:
            self._emit(ConnectorEvent.ERROR, exc)
            return

        try:
            message = self._parser.parse(frame.body)
            admitted = self._filter.admit(message, now=self._clock())
        except DecodeError as exc:
            self._decode_errors += 1
            self._emit(ConnectorEvent.ERROR, exc)
            return
        if not admitted:
            self._filtered_count += 1
            return
        self._delivered_count += 1
        self._emit(self.role.message_event, message)

    def _on_channel_error(self, error: BaseException) -> None:
        # Surfaced only; connection-level events drive reconnection.
        self._emit(ConnectorEvent.ERROR, error)

    def _on_connection_closed(self, generation: int, error: BaseException | None) -> None:
        if generation != self._generation or not self._started:
            return
        if self._state is ConnectionState.SHUTTING_DOWN:
            return
        if self._channel is not None:
            self._channel.remove_error_listeners()
        self._channel = None
        self._connection = None

        if error is None:
            logger.info("%s queue connection closed", self.role.value)
            self._emit(ConnectorEvent.CONNECTION_CLOSED, "AMQP connection closed.")
            self._set_state(ConnectionState.DISCONNECTED)
            return

        logger.warning("%s queue connection lost: %s", self.role.value, error)
        self._handle.clear()
        self._emit(ConnectorEvent.CONNECTION_CLOSED, error)
        task = self._attempt_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._schedule_retry()

    def _fail(self, error: BaseException) -> None:
        self._emit(ConnectorEvent.ERROR, error)
        self._schedule_retry()

    def _schedule_retry(self) -> None:
        if not self._started or self._state is ConnectionState.SHUTTING_DOWN:
            return
        assert self._config is not None
        self._set_state(ConnectionState.RETRYING)
        self._retry_timer.schedule(self._config.retry_delay_seconds, self._begin_attempt)

    async def _cancel_attempt(self) -> None:
        task = self._attempt_task
        self._attempt_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _release_resources(self) -> None:
        channel, connection = self._channel, self._connection
        self._channel = None
        self._connection = None
        if channel is not None:
            channel.remove_error_listeners()
            await self._close_quietly(channel.close, "channel")
        if connection is not None:
            connection.remove_close_listeners()
            await self._close_quietly(connection.close, "connection", connection.force_close)

    async def _close_quietly(
        self,
        close: Callable[[], Awaitable[None]],
        what: str,
        force: Callable[[], None] | None = None,
    ) -> None:
        """Best-effort close bounded by the shutdown grace period; failures are discarded.

        When the grace period runs out, ``force`` tears the resource down without a handshake.
        """
        try:
            await asyncio.wait_for(close(), timeout=self.shutdown_grace)
        except asyncio.TimeoutError:
            logger.warning("Timed out closing %s queue %s; forcing teardown", self.role.value, what)
            if force is not None:
                try:
                    force()
                except Exception as exc:
                    logger.debug("Ignoring error forcing %s queue %s closed: %s", self.role.value, what, exc)
        except Exception as exc:
            logger.debug("Ignoring error closing %s queue %s: %s", self.role.value, what, exc)

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("%s queue %s -> %s", self.role.value, self._state.value, state.value)
            self._state = state

    def _emit(self, event: ConnectorEvent, data: Any) -> None:
        try:
            self._sink.emit(event, data)
        except Exception:
            logger.exception("Event sink failed for %s", event.value)
