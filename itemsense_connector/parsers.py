"""Payload decoding for queue frames."""

from __future__ import annotations

import json
from typing import Any

from itemsense_connector.errors import DecodeError


class JSONParser:
    """Parse UTF-8 JSON payloads into dictionaries."""

    def parse(self, body: bytes) -> dict[str, Any]:
        try:
            parsed = json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise DecodeError(f"Unable to parse queue message content as JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise DecodeError("Queue message JSON must decode to an object")
        return parsed
