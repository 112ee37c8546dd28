"""Credential redaction for connector logging and config dumps.

The connector handles three kinds of secret: the ItemSense password
(option and YAML key), the HTTP Basic ``Authorization`` header sent to the
provisioning API, and credentials embedded in ``amqp://`` or ``http://``
URLs reported by the broker and the API.
"""

from __future__ import annotations

import logging
import re
from dataclasses import fields
from typing import Any

from itemsense_connector.config import ConnectorConfig

MASK = "***"

_SENSITIVE_KEYS = frozenset({"password", "authorization"})
_KEY_VALUE_PATTERN = re.compile(r"(?i)\b(password|authorization)\b(['\"]?\s*[:=]\s*['\"]?)(?!basic\b)([^\s,;'\"}]+)")
_AUTH_HEADER_PATTERN = re.compile(r"(?i)\bbasic\s+[A-Za-z0-9+/=]+")
_URL_CREDENTIALS_PATTERN = re.compile(r"(?i)\b((?:amqps?|https?)://[^:/\s@]+):[^@\s]+@")


def redact_sensitive_text(text: str) -> str:
    """Mask passwords, Basic auth headers and URL credentials in free text."""
    redacted = _KEY_VALUE_PATTERN.sub(lambda match: f"{match.group(1)}{match.group(2)}{MASK}", text)
    redacted = _AUTH_HEADER_PATTERN.sub(f"Basic {MASK}", redacted)
    return _URL_CREDENTIALS_PATTERN.sub(lambda match: f"{match.group(1)}:{MASK}@", redacted)


def redact_sensitive_data(value: Any) -> Any:
    """Recursively mask password and authorization entries in option mappings."""
    if isinstance(value, ConnectorConfig):
        return describe_config(value)
    if isinstance(value, dict):
        return {
            key: MASK if str(key).lower() in _SENSITIVE_KEYS else redact_sensitive_data(item)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return type(value)(redact_sensitive_data(item) for item in value)
    if isinstance(value, str):
        return redact_sensitive_text(value)
    return value


def describe_config(config: ConnectorConfig) -> dict[str, Any]:
    """Return a log-safe dict view of a connector config."""
    described: dict[str, Any] = {}
    for item in fields(config):
        value = getattr(config, item.name)
        if item.name == "password":
            value = MASK if value else ""
        elif item.name == "item_queue_filter":
            value = value.to_request_body()
        elif item.name == "roles":
            value = [role.value for role in value]
        described[item.name] = value
    return described


class SensitiveDataLogFilter(logging.Filter):
    """Logging filter that masks connector credentials in messages and arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            safe_args = redact_sensitive_data(record.args)
            try:
                rendered = str(record.msg) % safe_args
            except (TypeError, ValueError, KeyError):
                rendered = f"{record.msg} {safe_args!r}"
            record.args = ()
        else:
            rendered = str(record.msg)
        record.msg = redact_sensitive_text(rendered)
        return True
