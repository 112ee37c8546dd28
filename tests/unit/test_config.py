from __future__ import annotations

from pathlib import Path

import pytest

from itemsense_connector.config import (
    CONFIG_ENV_VAR,
    ConnectorConfig,
    QueueFilter,
    load_connector_config,
    resolve_config_path,
    validate_config,
)
from itemsense_connector.models import QueueRole


def test_defaults_are_applied() -> None:
    config = ConnectorConfig.from_options(None)

    assert config.id == "ItemSenseConnector"
    assert config.hostname == "127.0.0.1"
    assert config.port == 80
    assert config.amqp_port == 5672
    assert config.connection_retry_interval == 5000
    assert config.connection_heartbeat_interval == 30000
    assert config.item_queue_name == ""
    assert config.ignore_absent is False
    assert config.max_observation_time_delta == 0
    assert config.roles == (QueueRole.ITEM, QueueRole.HEALTH)
    assert config.item_queue_filter.to_request_body() == {}


def test_retry_and_heartbeat_floors() -> None:
    config = ConnectorConfig(connection_retry_interval=10, connection_heartbeat_interval=400)

    assert config.retry_delay_ms == 1000
    assert config.retry_delay_seconds == 1.0
    assert config.heartbeat_seconds == 1


def test_heartbeat_is_truncated_to_whole_seconds() -> None:
    assert ConnectorConfig(connection_heartbeat_interval=30999).heartbeat_seconds == 30


def test_camel_case_options_are_accepted() -> None:
    config = ConnectorConfig.from_options(
        {
            "hostname": "itemsense.local",
            "port": "8080",
            "amqpPort": 5673,
            "username": "admin",
            "password": "admindefault",
            "connectionRetryInterval": 2500,
            "connectionHeartbeatInterval": 10000,
            "itemQueueFilter": {"fromZone": "DOCK", "distance": 2.5},
            "ignoreAbsent": "yes",
            "maxObservationTimeDelta": 60000,
            "roles": "item, threshold",
            "unknownOption": True,
        }
    )

    assert config.hostname == "itemsense.local"
    assert config.port == 8080
    assert config.amqp_port == 5673
    assert config.connection_retry_interval == 2500
    assert config.item_queue_filter == QueueFilter(from_zone="DOCK", distance=2.5)
    assert config.ignore_absent is True
    assert config.max_observation_time_delta == 60000
    assert config.roles == (QueueRole.ITEM, QueueRole.THRESHOLD)
    assert config.api_base_url == "http://itemsense.local:8080"


def test_legacy_queue_alias_and_explicit_item_queue_name() -> None:
    assert ConnectorConfig.from_options({"queue": "legacy"}).item_queue_name == "legacy"
    config = ConnectorConfig.from_options({"queue": "legacy", "itemQueueName": "explicit"})
    assert config.item_queue_name == "explicit"


def test_none_values_fall_back_to_defaults() -> None:
    config = ConnectorConfig.from_options({"hostname": None, "connectionRetryInterval": None})

    assert config.hostname == "127.0.0.1"
    assert config.connection_retry_interval == 5000


def test_invalid_options_are_collected() -> None:
    with pytest.raises(ValueError) as exc_info:
        ConnectorConfig.from_options(
            {
                "port": "eighty",
                "ignoreAbsent": "sometimes",
                "roles": ["item", "pallet"],
                "itemQueueFilter": {"distance": -1},
            }
        )

    message = str(exc_info.value)
    assert message.startswith("Invalid connector config:")
    assert "port must be an integer" in message
    assert "ignore_absent must be a boolean" in message
    assert "unknown role 'pallet'" in message
    assert "item_queue_filter is invalid" in message


def test_boolean_is_not_an_integer() -> None:
    with pytest.raises(ValueError, match="port must be an integer"):
        ConnectorConfig.from_options({"port": True})


def test_unknown_filter_field_is_rejected() -> None:
    with pytest.raises(ValueError, match="item_queue_filter is invalid"):
        ConnectorConfig.from_options({"itemQueueFilter": {"fromRoom": "A"}})


def test_validate_config_reports_problems() -> None:
    config = ConnectorConfig(id=" ", port=0, amqp_port=70000, roles=(QueueRole.ITEM, QueueRole.ITEM))

    errors = validate_config(config)

    assert "id is required" in errors
    assert "port must be between 1 and 65535" in errors
    assert "amqpPort must be between 1 and 65535" in errors
    assert "roles must not repeat" in errors


def test_queue_filter_only_applies_to_item_role() -> None:
    queue_filter = QueueFilter(epc="3034")
    config = ConnectorConfig(item_queue_filter=queue_filter, health_queue_name="h", threshold_queue_name="t")

    assert config.queue_filter_for(QueueRole.ITEM) is queue_filter
    assert config.queue_filter_for(QueueRole.HEALTH) is None
    assert config.queue_name_for(QueueRole.HEALTH) == "h"
    assert config.queue_name_for(QueueRole.THRESHOLD) == "t"


def test_password_is_hidden_from_repr() -> None:
    assert "hunter2" not in repr(ConnectorConfig(password="hunter2"))


def test_load_connector_config_substitutes_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ITEMSENSE_PASSWORD", "from-env")
    config_file = tmp_path / "connector.yaml"
    config_file.write_text(
        "connector:\n"
        "  hostname: itemsense.local\n"
        "  username: admin\n"
        "  password: ${ITEMSENSE_PASSWORD}\n"
        "  ignoreAbsent: true\n"
        "  itemQueueFilter:\n"
        "    toZone: EXIT\n",
        encoding="utf-8",
    )

    config = load_connector_config(config_file)

    assert config.password == "from-env"
    assert config.ignore_absent is True
    assert config.item_queue_filter.to_request_body() == {"toZone": "EXIT"}


def test_load_connector_config_accepts_root_mapping(tmp_path: Path) -> None:
    config_file = tmp_path / "connector.yaml"
    config_file.write_text("hostname: 10.0.0.5\nroles: [health]\n", encoding="utf-8")

    config = load_connector_config(config_file)

    assert config.hostname == "10.0.0.5"
    assert config.roles == (QueueRole.HEALTH,)


def test_load_connector_config_errors(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_connector_config(tmp_path / "missing.yaml")

    bad = tmp_path / "bad.yaml"
    bad.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError, match="root must be a mapping"):
        load_connector_config(bad)


def test_resolve_config_path_priority(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.chdir(tmp_path)
    assert resolve_config_path(None) == tmp_path / "connector.yaml"
    assert resolve_config_path("custom.yaml") == Path("custom.yaml")

    monkeypatch.setenv(CONFIG_ENV_VAR, "/etc/itemsense/connector.yaml")
    assert resolve_config_path("custom.yaml") == Path("/etc/itemsense/connector.yaml")
