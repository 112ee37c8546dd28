"""Shared test fixtures for the ItemSense connector."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from itemsense_connector.brokers import MockBroker
from itemsense_connector.config import QueueFilter
from itemsense_connector.models import ConnectorEvent, QueueRole
from itemsense_connector.supervisor import ConnectionSupervisor


class FakeProvisioning:
    """Provisioning client double that creates queues on a MockBroker."""

    def __init__(self, broker: MockBroker) -> None:
        self.broker = broker
        self.reachable_failures: list[Exception] = []
        self.provision_failures: list[Exception] = []
        self.reachable_calls = 0
        self.provisioned: list[tuple[QueueRole, QueueFilter | None, str]] = []
        self._counters: dict[QueueRole, int] = {}

    async def check_reachable(self) -> None:
        self.reachable_calls += 1
        await asyncio.sleep(0)
        if self.reachable_failures:
            raise self.reachable_failures.pop(0)

    async def provision_queue(self, role: QueueRole, queue_filter: QueueFilter | None = None) -> str:
        await asyncio.sleep(0)
        if self.provision_failures:
            raise self.provision_failures.pop(0)
        self._counters[role] = self._counters.get(role, 0) + 1
        name = f"{role.value}-queue-{self._counters[role]}"
        self.broker.add_queue(name)
        self.provisioned.append((role, queue_filter, name))
        return name


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[ConnectorEvent, Any]] = []

    def emit(self, event: ConnectorEvent, data: Any) -> None:
        self.events.append((event, data))

    def of(self, event: ConnectorEvent) -> list[Any]:
        return [data for name, data in self.events if name is event]


class InstantSleep:
    """Retry sleep that records the requested delay and yields once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class ManualSleep:
    """Retry sleep that blocks until the test releases it."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._waiters: list[asyncio.Future[None]] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        await waiter

    def release_all(self) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)


async def _wait_until(predicate: Callable[[], bool], attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached in time")


@pytest.fixture
def broker() -> MockBroker:
    return MockBroker()


@pytest.fixture
def provisioning(broker: MockBroker) -> FakeProvisioning:
    return FakeProvisioning(broker)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def sleep() -> InstantSleep:
    return InstantSleep()


@pytest.fixture
def manual_sleep() -> ManualSleep:
    return ManualSleep()


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    return _wait_until


@pytest.fixture
def make_supervisor(
    broker: MockBroker,
    provisioning: FakeProvisioning,
    sink: RecordingSink,
    sleep: InstantSleep,
) -> Callable[..., ConnectionSupervisor]:
    def _make(role: QueueRole = QueueRole.ITEM, **kwargs: Any) -> ConnectionSupervisor:
        kwargs.setdefault("sleep", sleep)
        return ConnectionSupervisor(
            role,
            sink=sink,
            broker=broker,
            provisioning_factory=lambda _config: provisioning,
            **kwargs,
        )

    return _make
