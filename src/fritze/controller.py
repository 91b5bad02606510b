"""Polling loop and change detection.

:class:`Controller` logs in, fetches the device list every
:data:`~fritze._constants.POLL_INTERVAL` seconds and hands each batch to
a :class:`DiffHandler` running in its own task. The two are joined by a
single-slot queue, so a slow consumer holds the producer back instead of
letting batches pile up::

    teardown = asyncio.Event()
    controller = Controller(Client(base_url), username, password)
    await controller.run(teardown)  # returns after teardown.set() and logout
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from fritze._constants import POLL_INTERVAL
from fritze.client import Client, Session
from fritze.devices import Device
from fritze.errors import InvalidSessionError

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    NEW_DEVICE = "new_device"
    STATE_CHANGED = "state_changed"
    SUSTAINED_TRIGGER = "sustained_trigger"


@dataclass(frozen=True)
class DeviceEvent:
    """A change detected between two consecutive polls."""

    kind: EventKind
    device: Device
    previous: Device | None = None
    """Snapshot from the previous poll; ``None`` for new devices."""

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {"event": self.kind.value, "device": self.device.to_dict()}
        if self.previous is not None:
            data["previousStateValue"] = self.previous.state_value
        return data


EventSink = Callable[[DeviceEvent], Awaitable[None]]


class DiffHandler:
    """Track the last snapshot per device identifier and report changes.

    The identifier map is owned by this object and only mutated from
    :meth:`process`, which :meth:`run` calls from a single task.
    """

    def __init__(self, on_event: EventSink | None = None) -> None:
        self._on_event = on_event
        self._devices: dict[str, Device] = {}

    def __len__(self) -> int:
        return len(self._devices)

    def get(self, identifier: str) -> Device | None:
        """Most recent snapshot seen for *identifier*."""
        return self._devices.get(identifier)

    def process(self, devices: Iterable[Device]) -> list[DeviceEvent]:
        """Compare one batch against the stored state and return its events.

        Unseen identifiers yield ``NEW_DEVICE``. Known ones yield
        ``STATE_CHANGED`` when :attr:`Device.state_value` differs, or
        ``SUSTAINED_TRIGGER`` when it is unchanged and the device is still
        triggered. The stored snapshot is replaced in every case.
        """
        events: list[DeviceEvent] = []
        for device in devices:
            previous = self._devices.get(device.identifier)
            self._devices[device.identifier] = device
            if previous is None:
                events.append(DeviceEvent(EventKind.NEW_DEVICE, device))
            elif previous.state_value != device.state_value:
                events.append(DeviceEvent(EventKind.STATE_CHANGED, device, previous))
            elif device.triggered:
                events.append(DeviceEvent(EventKind.SUSTAINED_TRIGGER, device, previous))
        return events

    async def run(self, queue: asyncio.Queue[list[Device]]) -> None:
        """Consume batches from *queue* forever. Stop by cancelling the task."""
        while True:
            devices = await queue.get()
            try:
                logger.info("Received %d devices", len(devices))
                for event in self.process(devices):
                    _log_event(event)
                    if self._on_event is not None:
                        await self._on_event(event)
            finally:
                queue.task_done()


class Controller:
    """Drive login, periodic fetches and logout for one box."""

    def __init__(
        self,
        client: Client,
        username: str,
        password: str,
        *,
        handler: DiffHandler | None = None,
        interval: float = POLL_INTERVAL,
    ) -> None:
        self._client = client
        self._username = username
        self._password = password
        self._handler = handler if handler is not None else DiffHandler()
        self._interval = interval

    @property
    def handler(self) -> DiffHandler:
        return self._handler

    async def run(self, teardown: asyncio.Event) -> None:
        """Poll until *teardown* is set, then log out.

        A failed fetch ends the loop and its error propagates; there is no
        automatic reconnect. If the session aged out, one fresh login is
        attempted before giving up. Errors from the final logout propagate
        as well.
        """
        session = await self._client.login(self._username, self._password)
        queue: asyncio.Queue[list[Device]] = asyncio.Queue(maxsize=1)
        handler_task = asyncio.create_task(self._handler.run(queue))
        try:
            session = await self._poll(session, queue, teardown, handler_task)
        finally:
            handler_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await handler_task
        await self._client.logout(session)

    async def _poll(
        self,
        session: Session,
        queue: asyncio.Queue[list[Device]],
        teardown: asyncio.Event,
        handler_task: asyncio.Task[None],
    ) -> Session:
        relogged = False
        while True:
            try:
                devices = await self._client.fetch_devices(session)
            except InvalidSessionError:
                if relogged:
                    raise
                logger.warning("Session expired, logging in again")
                session = await self._client.login(self._username, self._password)
                relogged = True
                continue
            relogged = False

            await _handoff(queue, devices, handler_task)

            try:
                await asyncio.wait_for(teardown.wait(), timeout=self._interval)
            except TimeoutError:
                continue
            logger.info("Teardown requested, stopping poll loop")
            return session


async def list_devices(client: Client, username: str, password: str) -> list[Device]:
    """Log in, fetch the device list once and log out again."""
    session = await client.login(username, password)
    devices = await client.fetch_devices(session)
    await client.logout(session)
    return devices


async def _handoff(
    queue: asyncio.Queue[list[Device]],
    devices: list[Device],
    handler_task: asyncio.Task[None],
) -> None:
    """Put *devices* on *queue*, failing if the consumer task dies meanwhile."""
    if not handler_task.done():
        put = asyncio.ensure_future(queue.put(devices))
        done, _ = await asyncio.wait({put, handler_task}, return_when=asyncio.FIRST_COMPLETED)
        if put in done:
            return
        put.cancel()
    handler_task.result()
    raise RuntimeError("Diff handler stopped unexpectedly")


def _log_event(event: DeviceEvent) -> None:
    device = event.device
    if event.kind is EventKind.NEW_DEVICE:
        logger.debug("New device %s: %s, [%s]", device.identifier, device.name, device.description)
    elif event.kind is EventKind.STATE_CHANGED:
        assert event.previous is not None
        logger.info(
            "Device %s: %s, [%s] changed from %d to %d",
            device.identifier,
            device.name,
            device.description,
            event.previous.state_value,
            device.state_value,
        )
    else:
        logger.info(
            "Device %s: %s, [%s] is currently triggered",
            device.identifier,
            device.name,
            device.description,
        )
