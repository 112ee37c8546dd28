"""Local admission filter applied to decoded queue messages before delivery.

Only absence and staleness are evaluated here. Zone, facility, EPC-prefix
and distance filtering happen server-side when the item queue is created
(see :class:`itemsense_connector.config.QueueFilter`).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from itemsense_connector.config import ConnectorConfig
from itemsense_connector.errors import DecodeError
from itemsense_connector.models import QueueRole

ABSENT_ZONE = "ABSENT"


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp; values without an offset are taken as UTC."""
    if not isinstance(value, str) or not value.strip():
        raise DecodeError(f"Unable to parse message timestamp {value!r}")
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as exc:
        raise DecodeError(f"Unable to parse message timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True, slots=True)
class MessageAdmissionFilter:
    ignore_absent: bool = False
    max_observation_time_delta: int = 0
    timestamp_field: str = "observationTime"

    @classmethod
    def from_config(cls, config: ConnectorConfig, role: QueueRole = QueueRole.ITEM) -> MessageAdmissionFilter:
        return cls(
            ignore_absent=config.ignore_absent,
            max_observation_time_delta=config.max_observation_time_delta,
            timestamp_field=role.timestamp_field,
        )

    @property
    def staleness_enabled(self) -> bool:
        return self.max_observation_time_delta > 0

    def admit(self, message: Mapping[str, Any], now: datetime | None = None) -> bool:
        """Return whether the message should be forwarded.

        Raises DecodeError when staleness filtering is active and the
        message timestamp is missing or unparsable.
        """
        if self.ignore_absent and message.get("toZone") == ABSENT_ZONE:
            return False
        if not self.staleness_enabled:
            return True

        observed_at = parse_timestamp(message.get(self.timestamp_field))
        current = now if now is not None else datetime.now(timezone.utc)
        age_ms = (current - observed_at) / timedelta(milliseconds=1)
        return age_ms <= self.max_observation_time_delta
