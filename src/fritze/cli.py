"""Thin CLI wrapper wiring :class:`fritze.Controller` to :class:`fritze.Bridge`."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
from collections.abc import Awaitable
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import typer
from dotenv import load_dotenv

from fritze._constants import DEFAULT_BASE_URL, MQTT_DEFAULT_HOST, MQTT_DEFAULT_PORT, MQTT_DEFAULT_TOPIC
from fritze.bridge import Bridge
from fritze.client import Client
from fritze.controller import Controller, DiffHandler, list_devices
from fritze.errors import FritzError

logger = logging.getLogger(__name__)

app = typer.Typer(help="Bridge FRITZ!Box smart-home devices to MQTT.", add_completion=False)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _version_message() -> str:
    try:
        current = version("fritze-mqtt")
    except PackageNotFoundError:
        current = "development"
    return f"Fritze MQTT (Version: {current})"


def _configure_logging(level_name: str) -> None:
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level '{level_name}'.", param_hint="--log-level")
    logging.basicConfig(level=level, format=_LOG_FORMAT, stream=sys.stdout)


def _load_env_file() -> None:
    """Fill unset variables from ``.env`` in the working directory, else next to the executable."""
    if not load_dotenv(Path.cwd() / ".env"):
        load_dotenv(Path(sys.argv[0]).resolve().parent / ".env")


@app.command()
def main(
    show_version: bool = typer.Option(False, "--version", help="Display the current version"),
    list_only: bool = typer.Option(False, "--list", help="List devices and exit"),
    base_url: str = typer.Option(
        DEFAULT_BASE_URL, "--base-url", envvar="FRITZ_BASE_URL", help="Base URL of the box"
    ),
    username: str = typer.Option(
        "", "--username", "-u", envvar="USERNAME", help="User with smart home rights"
    ),
    password: str = typer.Option("", "--password", "-p", envvar="PASSWORD", help="Password of the user"),
    broker_host: str = typer.Option(
        MQTT_DEFAULT_HOST, "--broker-host", envvar="MQTT_BROKER_HOST", help="Hostname of the MQTT broker"
    ),
    broker_port: int = typer.Option(
        MQTT_DEFAULT_PORT, "--broker-port", envvar="MQTT_BROKER_PORT", help="Port of the MQTT broker"
    ),
    topic: str = typer.Option(
        MQTT_DEFAULT_TOPIC, "--topic", envvar="MQTT_BROKER_TOPIC", help="MQTT topic to subscribe"
    ),
    log_level: str = typer.Option("INFO", "--log-level", envvar="LOG_LEVEL", help="Logging level"),
) -> None:
    """Poll FRITZ!Box smart-home devices and report changes over MQTT."""
    typer.echo(_version_message())
    if show_version:
        raise typer.Exit(0)
    typer.echo()

    _configure_logging(log_level)

    if not username or not password:
        _load_env_file()
        username = username or os.environ.get("USERNAME", "")
        password = password or os.environ.get("PASSWORD", "")

    if not username or not password:
        typer.echo("username and password required", err=True)
        raise typer.Exit(1)

    client = Client(base_url)

    if list_only:
        try:
            devices = asyncio.run(list_devices(client, username, password))
        except FritzError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(1) from None
        for device in devices:
            typer.echo(f"{device.identifier}: {device.name}, [{device.description}]")
        return

    bridge = Bridge(broker_host, broker_port, topic)
    errors: list[BaseException] = []
    with contextlib.suppress(KeyboardInterrupt):
        errors = asyncio.run(_run_async(client, username, password, bridge))
    for error in errors:
        typer.echo(str(error), err=True)
    if errors:
        raise typer.Exit(1)


async def _run_async(client: Client, username: str, password: str, bridge: Bridge) -> list[BaseException]:
    """Run controller and bridge until SIGINT/SIGTERM or until the controller ends.

    A broker failure is logged and leaves polling running.
    """
    teardown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in _SIGNALS:
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _request_teardown, teardown)

    controller = Controller(client, username, password, handler=DiffHandler(on_event=bridge.publish_event))
    try:
        results = await asyncio.gather(
            _stop_all_when_done(controller.run(teardown), teardown),
            _run_bridge(bridge, teardown),
            return_exceptions=True,
        )
    finally:
        for sig in _SIGNALS:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(sig)
    return [r for r in results if isinstance(r, BaseException)]


def _request_teardown(teardown: asyncio.Event) -> None:
    logger.info("Received SIGINT/SIGTERM")
    teardown.set()


async def _run_bridge(bridge: Bridge, teardown: asyncio.Event) -> None:
    try:
        await bridge.run(teardown)
    except ConnectionError as e:
        logger.error("MQTT bridge stopped: %s", e)


async def _stop_all_when_done(task: Awaitable[None], teardown: asyncio.Event) -> None:
    try:
        await task
    finally:
        teardown.set()
