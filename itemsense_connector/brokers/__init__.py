"""Broker adapter implementations."""

from itemsense_connector.brokers.mock import MockBroker, MockChannel, MockConnection
from itemsense_connector.brokers.protocols import BrokerAdapter, BrokerChannel, BrokerConnection, BrokerParameters
from itemsense_connector.brokers.rabbitmq import RabbitMQBroker

__all__ = [
    "BrokerAdapter",
    "BrokerChannel",
    "BrokerConnection",
    "BrokerParameters",
    "MockBroker",
    "MockChannel",
    "MockConnection",
    "RabbitMQBroker",
]
