from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from itemsense_connector.config import ConnectorConfig
from itemsense_connector.errors import DecodeError
from itemsense_connector.filters import MessageAdmissionFilter, parse_timestamp
from itemsense_connector.models import QueueRole

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def _observed(ms_ago: int) -> str:
    return (NOW - timedelta(milliseconds=ms_ago)).isoformat()


def test_default_filter_admits_everything() -> None:
    admission = MessageAdmissionFilter()

    assert admission.admit({"toZone": "ABSENT"}, now=NOW) is True
    assert admission.admit({}, now=NOW) is True


def test_ignore_absent_rejects_only_absent_zone() -> None:
    admission = MessageAdmissionFilter(ignore_absent=True)

    assert admission.admit({"toZone": "ABSENT"}, now=NOW) is False
    assert admission.admit({"toZone": "ZONE_A"}, now=NOW) is True
    assert admission.admit({"fromZone": "ABSENT"}, now=NOW) is True


def test_staleness_threshold() -> None:
    admission = MessageAdmissionFilter(max_observation_time_delta=1000)

    assert admission.admit({"observationTime": _observed(5000)}, now=NOW) is False
    assert admission.admit({"observationTime": _observed(500)}, now=NOW) is True
    assert admission.admit({"observationTime": _observed(1000)}, now=NOW) is True


@pytest.mark.parametrize("delta", [0, -5])
def test_non_positive_delta_disables_staleness(delta: int) -> None:
    admission = MessageAdmissionFilter(max_observation_time_delta=delta)

    assert admission.staleness_enabled is False
    assert admission.admit({"observationTime": _observed(5000)}, now=NOW) is True
    assert admission.admit({"observationTime": "garbage"}, now=NOW) is True


@pytest.mark.parametrize("value", [None, "", "not-a-time", 1714564800])
def test_unusable_timestamp_raises_decode_error(value: object) -> None:
    admission = MessageAdmissionFilter(max_observation_time_delta=1000)

    with pytest.raises(DecodeError):
        admission.admit({"observationTime": value}, now=NOW)


def test_absent_check_runs_before_timestamp_parsing() -> None:
    admission = MessageAdmissionFilter(ignore_absent=True, max_observation_time_delta=1000)

    assert admission.admit({"toZone": "ABSENT", "observationTime": "garbage"}, now=NOW) is False


def test_health_role_uses_event_time() -> None:
    config = ConnectorConfig(max_observation_time_delta=1000, ignore_absent=True)
    admission = MessageAdmissionFilter.from_config(config, QueueRole.HEALTH)

    assert admission.timestamp_field == "eventTime"
    assert admission.admit({"eventTime": _observed(200)}, now=NOW) is True
    assert admission.admit({"eventTime": _observed(2000)}, now=NOW) is False


def test_parse_timestamp_assumes_utc_for_naive_values() -> None:
    assert parse_timestamp("2024-05-01T12:00:00") == NOW
    assert parse_timestamp("2024-05-01T14:00:00+02:00") == NOW
