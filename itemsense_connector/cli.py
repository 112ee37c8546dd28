"""CLI tools: itemsense-connector run, itemsense-connector serve."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from importlib import metadata
from typing import Any

import typer

from itemsense_connector.config import ConnectorConfig, load_connector_config, resolve_config_path
from itemsense_connector.connector import create_connector
from itemsense_connector.models import ConnectorEvent
from itemsense_connector.process import CommandProcessor
from itemsense_connector.security import SensitiveDataLogFilter
from itemsense_connector.sinks import StreamEventSink, serialize_event_data

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="itemsense-connector",
    help="ItemSense queue connector: resilient AMQP consumer for item, health and threshold events.",
)


def configure_logging(level: str = "INFO") -> None:
    """Log to stderr with credentials redacted."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    handler.addFilter(SensitiveDataLogFilter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())


def _print_version_and_exit() -> None:
    """Print installed package version and exit."""
    try:
        version = metadata.version("itemsense-connector")
    except metadata.PackageNotFoundError:
        version = "unknown"
    print(f"itemsense-connector {version}")
    raise SystemExit(0)


def _log_event(event: ConnectorEvent, data: Any) -> None:
    if event is ConnectorEvent.ERROR:
        logger.error("%s: %s", event.value, serialize_event_data(data))
    elif event in (ConnectorEvent.INFO, ConnectorEvent.CONNECTION_CLOSED):
        logger.info("%s: %s", event.value, serialize_event_data(data))
    else:
        logger.info("%s: %s", event.value, data)


async def _wait_for_stop_signal() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)
    await stop.wait()


async def run_connector(config: ConnectorConfig) -> None:
    """Run an in-process connector that logs every event until SIGINT/SIGTERM."""
    connector = create_connector()
    for event in ConnectorEvent:
        connector.on(event, lambda data, event=event: _log_event(event, data))
    await connector.start(config)
    try:
        await _wait_for_stop_signal()
    finally:
        await connector.shutdown()


async def serve_connector() -> None:
    """Child-process mode: commands on stdin, ``{event, data}`` lines on stdout."""
    connector = create_connector(sink=StreamEventSink(sys.stdout))
    await CommandProcessor(connector).serve(sys.stdin)


@app.command("run")
def run_command(
    config: str = typer.Option("", "--config", "-c", help="Connector YAML config path"),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level"),
) -> None:
    """Start the connector in-process and log every event."""
    configure_logging(log_level)
    path = resolve_config_path(config or None)
    try:
        connector_config = load_connector_config(path)
    except (FileNotFoundError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(2) from exc
    asyncio.run(run_connector(connector_config))


@app.command("serve")
def serve_command(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level (stderr)"),
) -> None:
    """Run as a child process driven by JSON-line commands on stdin."""
    configure_logging(log_level)
    asyncio.run(serve_connector())


def main() -> None:
    """CLI entry point."""
    if "--version" in sys.argv or "-V" in sys.argv:
        _print_version_and_exit()
    try:
        app()
    except KeyboardInterrupt:
        sys.exit(130)
