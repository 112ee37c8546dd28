"""ItemSense queue connector: resilient AMQP consumers for item, health and threshold events."""

from itemsense_connector.config import ConnectorConfig, QueueFilter, load_connector_config, validate_config
from itemsense_connector.connector import ItemSenseConnector, create_connector
from itemsense_connector.errors import (
    BrokerChannelError,
    BrokerConnectionError,
    ConnectorError,
    DecodeError,
    ProvisioningError,
    ProvisioningTimeout,
    QueueMissing,
    ServerError,
    Unauthorized,
    Unreachable,
)
from itemsense_connector.filters import MessageAdmissionFilter
from itemsense_connector.models import ConnectionState, ConnectorEvent, QueueHandle, QueueRole, RawFrame
from itemsense_connector.provisioning import QueueProvisioningClient
from itemsense_connector.sinks import EventSink, LocalEventSink, StreamEventSink
from itemsense_connector.supervisor import ConnectionSupervisor

__all__ = [
    "BrokerChannelError",
    "BrokerConnectionError",
    "ConnectionState",
    "ConnectionSupervisor",
    "ConnectorConfig",
    "ConnectorError",
    "ConnectorEvent",
    "DecodeError",
    "EventSink",
    "ItemSenseConnector",
    "LocalEventSink",
    "MessageAdmissionFilter",
    "ProvisioningError",
    "ProvisioningTimeout",
    "QueueFilter",
    "QueueHandle",
    "QueueMissing",
    "QueueProvisioningClient",
    "QueueRole",
    "RawFrame",
    "ServerError",
    "StreamEventSink",
    "Unauthorized",
    "Unreachable",
    "create_connector",
    "load_connector_config",
    "validate_config",
]
