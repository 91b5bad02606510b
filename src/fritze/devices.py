"""Device-list model for the AHA ``getdevicelistinfos`` command.

Raw ``<device>`` records are decoded into :class:`RawDevice` objects.
HAN-FUN devices show up as a parent record plus one record per unit;
each unit carries an ``<etsiunitinfo>`` block pointing back at the
parent by numeric id. :func:`project_devices` resolves those pointers
within one document and merges parent and unit into a flat
:class:`Device` snapshot.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum

from fritze.errors import ParseError

_UINT32_MASK = 0xFFFFFFFF
_MAX_FUNCTION_POSITION = 20
_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
_TRUE_SPELLINGS = frozenset({"1", "t", "T", "true", "TRUE", "True"})
_FALSE_SPELLINGS = frozenset({"0", "f", "F", "false", "FALSE", "False"})


class DeviceFunction(IntEnum):
    """Capabilities advertised in ``functionbitmask``; value = bit number."""

    HANFUN_DEVICE = 0
    LIGHT = 2
    ALARM_SENSOR = 4
    AVM_BUTTON = 5
    AVM_HEATING_CONTROLLER = 6
    AVM_POWER_METER = 7
    TEMPERATURE_SENSOR = 8
    AVM_OUTLET_SWITCH = 9
    AVM_DECT_REPEATER = 10
    AVM_MICROPHONE = 11
    HANFUN_UNIT = 13
    SIMPLE_ON_OFF = 15
    DIMMABLE_LEVEL = 16
    COLOR_ADJUSTABLE_LIGHT = 17
    BLINDS = 18
    HUMIDITY_SENSOR = 20


class DeviceType(IntEnum):
    """HAN-FUN unit types reported in ``<unittype>``."""

    SIMPLE_ON_OFF_SWITCHABLE = 256
    SIMPLE_ON_OFF_SWITCH = 257
    AC_OUTLET = 262
    AC_OUTLET_SIMPLE_POWER_METERING = 263
    SIMPLE_LIGHT = 264
    DIMMABLE_LIGHT = 265
    DIMMER_SWITCH = 266
    SIMPLE_BUTTON = 273
    COLOR_BULB = 277
    DIMMABLE_COLOR_BULB = 278
    BLIND = 281
    LAMELLAR = 282
    SIMPLE_DETECTOR = 512
    DOOR_OPEN_CLOSE_DETECTOR = 513
    WINDOW_OPEN_CLOSE_DETECTOR = 514
    MOTION_DETECTOR = 515
    FLOOD_DETECTOR = 518
    GLASS_BREAK_DETECTOR = 519
    VIBRATION_DETECTOR = 520
    SIREN = 640


class DeviceInterface(IntEnum):
    """HAN-FUN interfaces listed in ``<interfaces>``."""

    ALERT = 256
    KEEP_ALIVE = 277
    ON_OFF = 512
    LEVEL_CTRL = 513
    COLOR_CTRL = 514
    OPEN_CLOSE = 516
    OPEN_CLOSE_CONFIG = 517
    SIMPLE_BUTTON = 772
    OTA_UPDATE = 1024


_KNOWN_FUNCTIONS = frozenset(f.value for f in DeviceFunction)
_KNOWN_INTERFACES = frozenset(i.value for i in DeviceInterface)


# ---------------------------------------------------------------------------
# Raw records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OnOffState:
    state: int


@dataclass(frozen=True)
class AlertState:
    state: int
    last_alert_change: int
    """Unix timestamp of the last alert transition."""


@dataclass(frozen=True)
class ButtonState:
    identifier: str
    id: str
    name: str
    last_pressed: int
    """Unix timestamp of the last press."""


@dataclass(frozen=True)
class UnitInfo:
    """``<etsiunitinfo>`` block: back-pointer from a unit to its parent."""

    device_id: int
    """Numeric ``id`` of the parent record in the same document."""

    unit_type: int
    interfaces: tuple[int, ...] = ()

    @property
    def device_type(self) -> DeviceType | None:
        """The unit type as a :class:`DeviceType`, or ``None`` if unknown."""
        try:
            return DeviceType(self.unit_type)
        except ValueError:
            return None

    @property
    def known_interfaces(self) -> tuple[DeviceInterface, ...]:
        """Interfaces with a :class:`DeviceInterface` member; others are dropped."""
        return tuple(
            DeviceInterface(code) for code in self.interfaces if code in _KNOWN_INTERFACES
        )


@dataclass(frozen=True)
class RawDevice:
    """One ``<device>`` element exactly as the box reports it."""

    id: int
    product_name: str = ""
    identifier: str = ""
    manufacturer: str = ""
    fw_version: str = ""
    function_bitmask: int = 0
    name: str = ""
    present: bool = False
    tx_busy: bool = False
    battery: int | None = None
    battery_low: bool | None = None
    on_off: OnOffState | None = None
    alert: AlertState | None = None
    button: ButtonState | None = None
    unit_info: UnitInfo | None = None


@dataclass(frozen=True)
class DeviceList:
    """The ``<devicelist>`` root element."""

    version: str = ""
    fw_version: str = ""
    devices: tuple[RawDevice, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Device:
    """Application-facing snapshot of one device unit for a single poll."""

    id: int
    product_name: str
    identifier: str
    manufacturer: str
    fw_version: str
    name: str
    description: str
    state_value: int = -1
    """On/off or alert state; ``-1`` when neither applies."""

    triggered: bool = False
    functions: tuple[DeviceFunction, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """JSON-friendly representation (function names instead of enums)."""
        return {
            "id": self.id,
            "productName": self.product_name,
            "identifier": self.identifier,
            "manufacturer": self.manufacturer,
            "fwVersion": self.fw_version,
            "name": self.name,
            "description": self.description,
            "stateValue": self.state_value,
            "triggered": self.triggered,
            "functions": [f.name for f in self.functions],
        }


# ---------------------------------------------------------------------------
# Function bitmask
# ---------------------------------------------------------------------------


def decode_function_bitmask(bitmask: int) -> tuple[DeviceFunction, ...]:
    """Expand a ``functionbitmask`` into known :class:`DeviceFunction` members.

    Bit 0 is reserved, so positions 0..20 test bits 1..21. Set bits with
    no matching function are skipped; the result is ordered by bit and
    contains no duplicates.
    """
    mask = bitmask & _UINT32_MASK
    functions: list[DeviceFunction] = []
    for position in range(_MAX_FUNCTION_POSITION + 1):
        code = position + 1
        if mask & (1 << code) and code in _KNOWN_FUNCTIONS:
            functions.append(DeviceFunction(code))
    return tuple(functions)


# ---------------------------------------------------------------------------
# XML parsing
# ---------------------------------------------------------------------------


def parse_device_list(document: str | bytes) -> DeviceList:
    """Parse a ``getdevicelistinfos`` response.

    Raises :class:`ParseError` on malformed XML, an unexpected root
    element, or non-numeric values where numbers are required.
    """
    try:
        root = ET.fromstring(document)
    except ET.ParseError as e:
        raise ParseError(f"Malformed device list: {e}") from e
    if root.tag != "devicelist":
        raise ParseError(f"Unexpected root element <{root.tag}>, expected <devicelist>")
    try:
        devices = tuple(_parse_device(el) for el in root.findall("device"))
    except ValueError as e:
        raise ParseError(f"Invalid value in device list: {e}") from e
    return DeviceList(
        version=root.get("version", ""),
        fw_version=root.get("fwversion", ""),
        devices=devices,
    )


def _parse_device(el: ET.Element) -> RawDevice:
    battery = el.find("battery")
    battery_low = el.find("batterylow")
    return RawDevice(
        id=_to_int(el.get("id")),
        product_name=el.get("productname", ""),
        identifier=el.get("identifier", ""),
        manufacturer=el.get("manufacturer", ""),
        fw_version=el.get("fwversion", ""),
        function_bitmask=_to_int(el.get("functionbitmask")) & _UINT32_MASK,
        name=(el.findtext("name") or "").strip(),
        present=_to_bool(el.findtext("present")),
        tx_busy=_to_bool(el.findtext("txbusy")),
        battery=_to_int(battery.text) if battery is not None else None,
        battery_low=_to_bool(battery_low.text) if battery_low is not None else None,
        on_off=_parse_on_off(el.find("simpleonoff")),
        alert=_parse_alert(el.find("alert")),
        button=_parse_button(el.find("button")),
        unit_info=_parse_unit_info(el.find("etsiunitinfo")),
    )


def _parse_on_off(el: ET.Element | None) -> OnOffState | None:
    if el is None:
        return None
    return OnOffState(state=_to_int(el.findtext("state")))


def _parse_alert(el: ET.Element | None) -> AlertState | None:
    if el is None:
        return None
    return AlertState(
        state=_to_int(el.findtext("state")),
        last_alert_change=_to_int(el.findtext("lastalertchgtimestamp")),
    )


def _parse_button(el: ET.Element | None) -> ButtonState | None:
    if el is None:
        return None
    return ButtonState(
        identifier=el.get("identifier", ""),
        id=el.get("id", ""),
        name=(el.findtext("name") or "").strip(),
        last_pressed=_to_int(el.findtext("lastpressedtimestamp")),
    )


def _parse_unit_info(el: ET.Element | None) -> UnitInfo | None:
    if el is None:
        return None
    interfaces = (el.findtext("interfaces") or "").strip()
    return UnitInfo(
        device_id=_to_int(el.findtext("etsideviceid")),
        unit_type=_to_int(el.findtext("unittype")),
        interfaces=tuple(int(part) for part in interfaces.split(",") if part.strip()),
    )


def _to_int(text: str | None) -> int:
    """Empty or missing numeric fields count as zero."""
    if text is None or not text.strip():
        return 0
    return int(text.strip())


def _to_bool(text: str | None) -> bool:
    value = (text or "").strip()
    if value == "" or value in _FALSE_SPELLINGS:
        return False
    if value in _TRUE_SPELLINGS:
        return True
    raise ValueError(f"invalid boolean {text!r}")


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------


def project_devices(records: Iterable[RawDevice]) -> list[Device]:
    """Merge every unit record with its parent into a :class:`Device`.

    Parents are looked up by id within *records* only. Units whose
    parent is missing from the batch are skipped, as are records with
    no ``<etsiunitinfo>``.
    """
    batch = list(records)
    by_id = {record.id: record for record in batch}
    devices: list[Device] = []
    for unit in batch:
        if unit.unit_info is None:
            continue
        parent = by_id.get(unit.unit_info.device_id)
        if parent is None:
            continue
        devices.append(project_device(parent, unit))
    return devices


def project_device(parent: RawDevice, unit: RawDevice) -> Device:
    """Build one snapshot from a parent record and one of its units.

    When a unit reports both on/off and alert state, the alert state wins
    for :attr:`Device.state_value`.
    """
    name = parent.name
    if unit.name != parent.name:
        name = f"{parent.name} ({unit.name})"

    parts: list[str] = []
    state_value = -1
    if unit.on_off is not None:
        parts.append(f"on_off={unit.on_off.state}")
        state_value = unit.on_off.state
    if unit.alert is not None:
        parts.append(
            f"alert={unit.alert.state}, lastchange={_format_timestamp(unit.alert.last_alert_change)}"
        )
        state_value = unit.alert.state
    if unit.button is not None:
        parts.append("button")
        parts.append(f"lastpressed={_format_timestamp(unit.button.last_pressed)}")
    if parent.battery is not None:
        parts.append(f"battery={parent.battery}%")

    return Device(
        id=parent.id,
        product_name=parent.product_name,
        identifier=parent.identifier,
        manufacturer=parent.manufacturer,
        fw_version=parent.fw_version,
        name=name,
        description=", ".join(parts),
        state_value=state_value,
        triggered=unit.alert is not None and unit.alert.state == 1,
        functions=decode_function_bitmask(unit.function_bitmask),
    )


def _format_timestamp(ts: int) -> str:
    return datetime.fromtimestamp(ts).strftime(_TIMESTAMP_FORMAT)
