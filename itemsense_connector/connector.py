"""Connector facade: one event sink and one supervisor per enabled queue role."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from itemsense_connector.brokers.protocols import BrokerAdapter
from itemsense_connector.brokers.rabbitmq import RabbitMQBroker
from itemsense_connector.config import ConnectorConfig
from itemsense_connector.models import ConnectorEvent, QueueRole
from itemsense_connector.scheduling import Sleep
from itemsense_connector.security import describe_config
from itemsense_connector.sinks import EventSink, Listener, LocalEventSink
from itemsense_connector.supervisor import (
    DEFAULT_SHUTDOWN_GRACE_SECONDS,
    Clock,
    ConnectionSupervisor,
    ProvisioningFactory,
)

logger = logging.getLogger(__name__)


class ItemSenseConnector:
    """Run independent queue supervisors against one ItemSense server.

    Example:
        connector = create_connector()
        connector.on("itemQueueMessage", handle_item)
        await connector.start({"hostname": "itemsense.local", "username": "admin", "password": "..."})
        ...
        await connector.shutdown()
    """

    def __init__(
        self,
        *,
        sink: EventSink | None = None,
        broker: BrokerAdapter | None = None,
        provisioning_factory: ProvisioningFactory | None = None,
        sleep: Sleep | None = None,
        clock: Clock | None = None,
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE_SECONDS,
    ) -> None:
        self.sink: EventSink = sink if sink is not None else LocalEventSink()
        self._broker: BrokerAdapter = broker if broker is not None else RabbitMQBroker()
        self._provisioning_factory = provisioning_factory
        self._sleep = sleep
        self._clock = clock
        self._shutdown_grace = shutdown_grace
        self._supervisors: dict[QueueRole, ConnectionSupervisor] = {}
        self._config: ConnectorConfig | None = None
        self._started = False

    @property
    def config(self) -> ConnectorConfig | None:
        return self._config

    def is_started(self) -> bool:
        return self._started

    def supervisor(self, role: QueueRole) -> ConnectionSupervisor | None:
        return self._supervisors.get(role)

    def on(self, event: ConnectorEvent | str, listener: Listener) -> None:
        self._local_sink().on(event, listener)

    def once(self, event: ConnectorEvent | str, listener: Listener) -> None:
        self._local_sink().once(event, listener)

    def off(self, event: ConnectorEvent | str, listener: Listener) -> None:
        self._local_sink().off(event, listener)

    def emit(self, event: ConnectorEvent, data: Any) -> None:
        self.sink.emit(event, data)

    async def start(self, options: ConnectorConfig | Mapping[str, Any] | None = None) -> None:
        """Snapshot the options and start one supervisor per enabled role. Idempotent."""
        if self._started:
            return
        config = options if isinstance(options, ConnectorConfig) else ConnectorConfig.from_options(options)
        self._config = config
        self._started = True
        logger.info("Starting connector %s with %s", config.id, describe_config(config))
        for role in config.roles:
            await self._supervisor_for(role).start(config)

    async def shutdown(self) -> None:
        """Shut every supervisor down. Idempotent."""
        if not self._started:
            return
        self._started = False
        await asyncio.gather(*(supervisor.shutdown() for supervisor in self._supervisors.values()))
        logger.info("Connector %s shut down", self._config.id if self._config else "")

    async def health_check(self) -> dict[str, Any]:
        """Return connector status and per-role supervisor health."""
        roles = {role.value: await supervisor.health_check() for role, supervisor in self._supervisors.items()}
        return {
            "id": self._config.id if self._config else None,
            "started": self._started,
            "roles": roles,
        }

    def _supervisor_for(self, role: QueueRole) -> ConnectionSupervisor:
        supervisor = self._supervisors.get(role)
        if supervisor is None:
            supervisor = ConnectionSupervisor(
                role,
                sink=self.sink,
                broker=self._broker,
                provisioning_factory=self._provisioning_factory,
                sleep=self._sleep,
                clock=self._clock,
                shutdown_grace=self._shutdown_grace,
            )
            self._supervisors[role] = supervisor
        return supervisor

    def _local_sink(self) -> LocalEventSink:
        if not isinstance(self.sink, LocalEventSink):
            raise TypeError("Listeners can only be registered when events are delivered in-process")
        return self.sink


def create_connector(**kwargs: Any) -> ItemSenseConnector:
    """Create a connector delivering events to in-process listeners unless a sink is given."""
    return ItemSenseConnector(**kwargs)
