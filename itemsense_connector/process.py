"""Process-boundary command surface: JSON-line commands in, JSON-line events out."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Mapping
from typing import Any, TextIO

from itemsense_connector.connector import ItemSenseConnector
from itemsense_connector.models import ConnectorEvent

logger = logging.getLogger(__name__)


def parse_command(message: Any) -> tuple[str | None, Mapping[str, Any] | None]:
    """Return ``(command, options)`` for ``{"start": {...}}`` or ``{"command": ..., "options": ...}``."""
    if not isinstance(message, Mapping) or not message:
        return None, None
    if "command" in message:
        options = message.get("options")
        return str(message["command"]), options if isinstance(options, Mapping) else None
    if "start" in message:
        options = message["start"]
        return "start", options if isinstance(options, Mapping) else None
    if "shutdown" in message:
        return "shutdown", None
    return str(next(iter(message))), None


class CommandProcessor:
    """Turn inbound process messages into connector start/shutdown calls."""

    def __init__(self, connector: ItemSenseConnector) -> None:
        self.connector = connector

    async def handle(self, message: Any) -> None:
        command, options = parse_command(message)
        if command is None:
            self.connector.emit(ConnectorEvent.INFO, "Ignoring message without a command")
            return
        if command == "start":
            self.connector.emit(ConnectorEvent.INFO, "Received start command")
            try:
                await self.connector.start(options)
            except ValueError as exc:
                self.connector.emit(ConnectorEvent.ERROR, exc)
            return
        if command == "shutdown":
            self.connector.emit(ConnectorEvent.INFO, "Received shutdown command")
            await self.connector.shutdown()
            return
        self.connector.emit(ConnectorEvent.INFO, f"Received unknown command [ {command} ]")

    async def handle_line(self, line: str) -> None:
        try:
            message = json.loads(line)
        except json.JSONDecodeError as exc:
            self.connector.emit(ConnectorEvent.ERROR, ValueError(f"Malformed command line: {exc}"))
            return
        await self.handle(message)

    async def serve(self, stream: TextIO | None = None) -> None:
        """Read commands until end of input, then shut the connector down."""
        source = stream if stream is not None else sys.stdin
        try:
            while True:
                line = await asyncio.to_thread(source.readline)
                if not line:
                    logger.debug("Command stream closed")
                    break
                if line.strip():
                    await self.handle_line(line)
        finally:
            await self.connector.shutdown()
