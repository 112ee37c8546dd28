"""ItemSense HTTP API client used to check liveness and provision queues."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from itemsense_connector.config import ConnectorConfig, QueueFilter
from itemsense_connector.errors import (
    ProvisioningError,
    ProvisioningTimeout,
    ServerError,
    Unauthorized,
    Unreachable,
)
from itemsense_connector.models import QueueRole

logger = logging.getLogger(__name__)

LIVENESS_PATH = "/itemsense/data/v1/items/show"
DEFAULT_TIMEOUT_SECONDS = 5.0


class ProvisioningClient(Protocol):
    """Operations the supervisor needs from the ItemSense API."""

    async def check_reachable(self) -> None:
        """Raise a ProvisioningError subclass when the server is not usable."""

    async def provision_queue(self, role: QueueRole, queue_filter: QueueFilter | None = None) -> str:
        """Create a queue for ``role`` and return its name."""


class QueueProvisioningClient:
    """httpx-backed client for the ItemSense queue provisioning endpoints."""

    def __init__(
        self,
        *,
        base_url: str,
        username: str = "",
        password: str = "",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._auth = httpx.BasicAuth(username, password)
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: ConnectorConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> QueueProvisioningClient:
        return cls(
            base_url=config.api_base_url,
            username=config.username,
            password=config.password,
            transport=transport,
        )

    async def check_reachable(self) -> None:
        response = await self._request("GET", LIVENESS_PATH, params={"pageSize": 1})
        if response.status_code == 401:
            raise Unauthorized("Unauthorized - check username and password", status_code=401)
        if not response.is_success:
            raise ServerError(f"Server returned status code {response.status_code}", status_code=response.status_code)

    async def provision_queue(self, role: QueueRole, queue_filter: QueueFilter | None = None) -> str:
        body = queue_filter.to_request_body() if queue_filter is not None else {}
        response = await self._request("PUT", role.provisioning_path, json=body)
        if response.status_code == 401:
            raise Unauthorized("Unauthorized - check username and password", status_code=401)
        if not response.is_success:
            raise ProvisioningError(
                f"Server responded with status code {response.status_code} creating {role.value} queue"
            )
        name = self._queue_name(response)
        logger.debug("Provisioned %s queue %s", role.value, name)
        return name

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=self._auth,
                timeout=self._timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            ) as client:
                return await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProvisioningTimeout("Server connection timeout") from exc
        except httpx.TransportError as exc:
            raise Unreachable(f"Unable to reach {self.base_url}: {exc}") from exc

    @staticmethod
    def _queue_name(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProvisioningError("Queue creation response is not valid JSON") from exc
        name = payload.get("queue") if isinstance(payload, dict) else None
        if not isinstance(name, str) or not name:
            raise ProvisioningError("Queue creation response does not name a queue")
        return name
