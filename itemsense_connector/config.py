"""Connector configuration: typed options record, defaults, validation and YAML loading."""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, cast

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from itemsense_connector.models import QueueRole

DEFAULT_ID = "ItemSenseConnector"
DEFAULT_HOSTNAME = "127.0.0.1"
DEFAULT_PORT = 80
DEFAULT_AMQP_PORT = 5672
DEFAULT_CONN_RETRY_MS = 5000
DEFAULT_CONN_HEARTBEAT_MS = 30000
DEFAULT_MAX_OBSERVATION_TIME_DELTA_MS = 0
DEFAULT_ROLES: tuple[QueueRole, ...] = (QueueRole.ITEM, QueueRole.HEALTH)

MIN_CONN_RETRY_MS = 1000
MIN_CONN_HEARTBEAT_SECONDS = 1

CONFIG_ENV_VAR = "ITEMSENSE_CONNECTOR_CONFIG"


class QueueFilter(BaseModel):
    """Item queue filter sent to the provisioning endpoint when a queue is created."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    from_facility: str | None = Field(default=None, alias="fromFacility")
    to_facility: str | None = Field(default=None, alias="toFacility")
    from_zone: str | None = Field(default=None, alias="fromZone")
    to_zone: str | None = Field(default=None, alias="toZone")
    epc: str | None = Field(default=None, description="EPC prefix.")
    job_id: str | None = Field(default=None, alias="jobId")
    distance: float | None = Field(default=None, ge=0.0)
    zone_transitions_only: bool | None = Field(default=None, alias="zoneTransitionsOnly")

    def to_request_body(self) -> dict[str, Any]:
        """Return the JSON body for queue creation; ``{}`` when nothing is set."""
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(frozen=True, slots=True)
class ConnectorConfig:
    """Immutable connector options snapshot, captured once per ``start()``."""

    id: str = DEFAULT_ID
    hostname: str = DEFAULT_HOSTNAME
    port: int = DEFAULT_PORT
    amqp_port: int = DEFAULT_AMQP_PORT
    username: str = ""
    password: str = field(default="", repr=False)
    connection_retry_interval: int = DEFAULT_CONN_RETRY_MS
    connection_heartbeat_interval: int = DEFAULT_CONN_HEARTBEAT_MS
    item_queue_name: str = ""
    health_queue_name: str = ""
    threshold_queue_name: str = ""
    item_queue_filter: QueueFilter = field(default_factory=QueueFilter)
    ignore_absent: bool = False
    max_observation_time_delta: int = DEFAULT_MAX_OBSERVATION_TIME_DELTA_MS
    roles: tuple[QueueRole, ...] = DEFAULT_ROLES

    @property
    def retry_delay_ms(self) -> int:
        return max(MIN_CONN_RETRY_MS, self.connection_retry_interval)

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000

    @property
    def heartbeat_seconds(self) -> int:
        """AMQP heartbeat is negotiated in whole seconds."""
        return max(MIN_CONN_HEARTBEAT_SECONDS, self.connection_heartbeat_interval // 1000)

    @property
    def api_base_url(self) -> str:
        return f"http://{self.hostname}:{self.port}"

    def queue_name_for(self, role: QueueRole) -> str:
        if role is QueueRole.ITEM:
            return self.item_queue_name
        if role is QueueRole.HEALTH:
            return self.health_queue_name
        return self.threshold_queue_name

    def queue_filter_for(self, role: QueueRole) -> QueueFilter | None:
        """Only item queues accept a filter; health and threshold queues are created with ``{}``."""
        return self.item_queue_filter if role is QueueRole.ITEM else None

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None = None) -> ConnectorConfig:
        """Build a config from an options mapping, applying defaults once.

        Keys may use the camelCase option names (``connectionRetryInterval``)
        or the field names (``connection_retry_interval``). Unknown keys are
        ignored and ``None`` values fall back to defaults.
        """
        normalized = _normalize_options(options or {})
        defaults = cls()
        problems: list[str] = []

        def _collect(func: Any, key: str, default: Any) -> Any:
            try:
                return func(normalized, key, default)
            except ValueError as exc:
                problems.append(str(exc))
                return default

        item_queue_filter = _collect(_require_filter, "item_queue_filter", defaults.item_queue_filter)
        config = cls(
            id=_collect(_require_str, "id", defaults.id),
            hostname=_collect(_require_str, "hostname", defaults.hostname),
            port=_collect(_require_int, "port", defaults.port),
            amqp_port=_collect(_require_int, "amqp_port", defaults.amqp_port),
            username=_collect(_require_str, "username", defaults.username),
            password=_collect(_require_str, "password", defaults.password),
            connection_retry_interval=_collect(_require_int, "connection_retry_interval", defaults.connection_retry_interval),
            connection_heartbeat_interval=_collect(
                _require_int, "connection_heartbeat_interval", defaults.connection_heartbeat_interval
            ),
            item_queue_name=_collect(_require_str, "item_queue_name", defaults.item_queue_name),
            health_queue_name=_collect(_require_str, "health_queue_name", defaults.health_queue_name),
            threshold_queue_name=_collect(_require_str, "threshold_queue_name", defaults.threshold_queue_name),
            item_queue_filter=item_queue_filter,
            ignore_absent=_collect(_coerce_bool, "ignore_absent", defaults.ignore_absent),
            max_observation_time_delta=_collect(
                _require_int, "max_observation_time_delta", defaults.max_observation_time_delta
            ),
            roles=_collect(_require_roles, "roles", defaults.roles),
        )
        problems.extend(validate_config(config))
        _raise_on_errors(problems)
        return config


def validate_config(config: ConnectorConfig) -> list[str]:
    """Validate connector configuration and return error messages."""
    errors: list[str] = []

    if not config.id.strip():
        errors.append("id is required")
    if not config.hostname.strip():
        errors.append("hostname is required")
    if not 0 < config.port < 65536:
        errors.append("port must be between 1 and 65535")
    if not 0 < config.amqp_port < 65536:
        errors.append("amqpPort must be between 1 and 65535")
    if not config.roles:
        errors.append("roles must name at least one queue role")
    if len(set(config.roles)) != len(config.roles):
        errors.append("roles must not repeat")

    return errors


def _raise_on_errors(errors: list[str]) -> None:
    if errors:
        raise ValueError(f"Invalid connector config: {'; '.join(errors)}")


_OPTION_ALIASES: dict[str, str] = {
    "amqpPort": "amqp_port",
    "connectionRetryInterval": "connection_retry_interval",
    "connectionHeartbeatInterval": "connection_heartbeat_interval",
    "itemQueueName": "item_queue_name",
    "queue": "item_queue_name",
    "healthQueueName": "health_queue_name",
    "thresholdQueueName": "threshold_queue_name",
    "itemQueueFilter": "item_queue_filter",
    "ignoreAbsent": "ignore_absent",
    "maxObservationTimeDelta": "max_observation_time_delta",
}
_FIELD_NAMES = {item.name for item in fields(ConnectorConfig)}


def _normalize_options(options: Mapping[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in options.items():
        name = _OPTION_ALIASES.get(key, key)
        if name not in _FIELD_NAMES or value is None:
            continue
        # An explicit itemQueueName wins over the legacy ``queue`` alias.
        if key == "queue" and "itemQueueName" in options and options["itemQueueName"] is not None:
            continue
        normalized[name] = value
    return normalized


def _require_str(config_map: dict[str, Any], key: str, default: str) -> str:
    value = config_map.get(key, default)
    if value is None:
        return default
    if isinstance(value, dict | list):
        raise ValueError(f"{key} must be a string")
    return str(value)


def _require_int(config_map: dict[str, Any], key: str, default: int) -> int:
    value = config_map.get(key, default)
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be an integer") from exc


def _coerce_bool(config_map: dict[str, Any], key: str, default: bool) -> bool:
    value = config_map.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"{key} must be a boolean")


def _require_filter(config_map: dict[str, Any], key: str, default: QueueFilter) -> QueueFilter:
    value = config_map.get(key, default)
    if isinstance(value, QueueFilter):
        return value
    if not isinstance(value, Mapping):
        raise ValueError(f"{key} must be a mapping")
    try:
        return QueueFilter.model_validate(dict(value))
    except ValidationError as exc:
        details = ", ".join(f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors())
        raise ValueError(f"{key} is invalid ({details})") from exc


def _require_roles(
    config_map: dict[str, Any], key: str, default: tuple[QueueRole, ...]
) -> tuple[QueueRole, ...]:
    value = config_map.get(key, default)
    if isinstance(value, str):
        value = [part for part in (item.strip() for item in value.split(",")) if part]
    if not isinstance(value, Iterable):
        raise ValueError(f"{key} must be a list of queue roles")
    roles: list[QueueRole] = []
    for item in value:
        try:
            roles.append(item if isinstance(item, QueueRole) else QueueRole(str(item).strip().lower()))
        except ValueError as exc:
            valid = ", ".join(role.value for role in QueueRole)
            raise ValueError(f"{key} contains unknown role {item!r}; expected one of {valid}") from exc
    return tuple(roles)


_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _replace_env_vars(value: Any) -> Any:
    """Recursively replace ${ENV_VAR} placeholders using process env."""
    if isinstance(value, dict):
        return {k: _replace_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_replace_env_vars(v) for v in value]
    if not isinstance(value, str):
        return value

    def _lookup(match: re.Match[str]) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_PATTERN.sub(_lookup, value)


def resolve_config_path(cli_path: str | None = None) -> Path:
    """Resolve config path by priority: env -> cli -> cwd default."""
    env_path = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if env_path:
        return Path(env_path)
    if cli_path and cli_path.strip():
        return Path(cli_path.strip())
    return Path.cwd() / "connector.yaml"


def load_connector_config(config_path: str | Path) -> ConnectorConfig:
    """Load connector config from a YAML file and validate it."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Connector config root must be a mapping")

    config_map = raw.get("connector", raw)
    if not isinstance(config_map, dict):
        raise ValueError("connector section must be a mapping")
    return ConnectorConfig.from_options(cast(dict[str, Any], _replace_env_vars(config_map)))
