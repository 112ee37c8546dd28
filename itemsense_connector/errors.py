"""Connector error taxonomy shared by provisioning, broker adapters and supervisors."""

from __future__ import annotations


class ConnectorError(Exception):
    """Base class for every failure the connector reports through its event sink."""

    kind = "ConnectorError"

    def to_payload(self) -> dict[str, str]:
        """Serializable form used when events cross a process boundary."""
        return {"kind": self.kind, "message": str(self)}


class ProvisioningError(ConnectorError):
    """Queue provisioning request was rejected or returned an unusable body."""

    kind = "ProvisioningError"


class Unreachable(ProvisioningError):
    """The ItemSense API could not be reached at transport level."""

    kind = "Unreachable"


class ServerError(ProvisioningError):
    """The ItemSense API answered with a non-2xx status."""

    kind = "ServerError"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class Unauthorized(ServerError):
    """The ItemSense API rejected the configured credentials."""

    kind = "Unauthorized"


class ProvisioningTimeout(ProvisioningError):
    """No answer within the bounded request timeout."""

    kind = "Timeout"


class BrokerConnectionError(ConnectorError):
    """Broker connect/handshake failure or an asynchronous post-connect fault."""

    kind = "BrokerConnectionError"


class BrokerChannelError(ConnectorError):
    """Channel-level broker fault."""

    kind = "BrokerChannelError"


class QueueMissing(ConnectorError):
    """A supplied queue name failed validation against the broker."""

    kind = "QueueMissing"

    def __init__(self, queue_name: str) -> None:
        super().__init__(f"Queue [ {queue_name} ] no longer exists.")
        self.queue_name = queue_name


class DecodeError(ConnectorError, ValueError):
    """Payload could not be decoded, or its timestamp could not be parsed."""

    kind = "DecodeError"
