"""MQTT side of the bridge.

Connects to a broker, subscribes to the configured topic and publishes
device change events under ``<topic>/<identifier>``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Coroutine
from typing import Any

import aiomqtt

from fritze._constants import MQTT_CLIENT_ID, MQTT_DEFAULT_HOST, MQTT_DEFAULT_PORT, MQTT_DEFAULT_TOPIC
from fritze.controller import DeviceEvent

logger = logging.getLogger(__name__)


class BridgeError(ConnectionError):
    """Raised when the broker connection fails.

    Wraps :class:`aiomqtt.MqttError` so callers do not need to import
    ``aiomqtt`` to catch broker failures from :meth:`Bridge.run`.
    """


class Bridge:
    """Single broker connection shared by the subscriber and the event publisher."""

    def __init__(
        self,
        host: str = MQTT_DEFAULT_HOST,
        port: int = MQTT_DEFAULT_PORT,
        topic: str = MQTT_DEFAULT_TOPIC,
    ) -> None:
        self._host = host
        self._port = port
        self._topic = topic
        self._active_mqtt: aiomqtt.Client | None = None

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def is_connected(self) -> bool:
        """True while the broker connection is established."""
        return self._active_mqtt is not None

    async def run(self, teardown: asyncio.Event) -> None:
        """Stay connected and log inbound messages until *teardown* is set.

        Raises :class:`BridgeError` if the connection cannot be set up or
        drops before teardown.
        """
        try:
            async with aiomqtt.Client(
                hostname=self._host, port=self._port, identifier=MQTT_CLIENT_ID
            ) as mqtt_client:
                self._active_mqtt = mqtt_client
                try:
                    await mqtt_client.subscribe(self._topic, qos=1)
                    logger.info("Subscribed to topic %s", self._topic)
                    await _until_teardown(self._listen(mqtt_client), teardown)
                finally:
                    self._active_mqtt = None
        except aiomqtt.MqttError as e:
            raise BridgeError(str(e)) from e
        logger.info("Disconnected from broker %s:%d", self._host, self._port)

    async def publish_event(self, event: DeviceEvent) -> None:
        """Publish *event* as JSON; dropped when not connected.

        Publish failures are logged and do not interrupt the caller.
        """
        topic = f"{self._topic}/{event.device.identifier.replace(' ', '')}"
        if self._active_mqtt is None:
            logger.debug("Not connected, dropping %s event for %s", event.kind.value, topic)
            return
        payload = json.dumps(event.to_dict(), separators=(",", ":"))
        try:
            await self._active_mqtt.publish(topic, payload, qos=1)
        except aiomqtt.MqttError as e:
            logger.warning("Publishing to %s failed: %s", topic, e)

    async def _listen(self, mqtt_client: aiomqtt.Client) -> None:
        async for message in mqtt_client.messages:
            payload = message.payload
            if isinstance(payload, (bytes, bytearray)):
                payload = payload.decode("utf-8", errors="replace")
            logger.info("Received message: %s from topic: %s", payload, message.topic)


async def _until_teardown(listener_coro: Coroutine[Any, Any, None], teardown: asyncio.Event) -> None:
    """Run the listener until *teardown* fires; re-raise if the listener fails first."""
    listener = asyncio.create_task(listener_coro)
    waiter = asyncio.create_task(teardown.wait())
    try:
        done, _ = await asyncio.wait({listener, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        listener.cancel()
        waiter.cancel()
        await asyncio.gather(listener, waiter, return_exceptions=True)
    if listener in done:
        listener.result()
