"""Tests for fritze.devices."""

from __future__ import annotations

from datetime import datetime

import pytest

from fritze.devices import (
    AlertState,
    ButtonState,
    Device,
    DeviceFunction,
    DeviceInterface,
    DeviceType,
    OnOffState,
    RawDevice,
    UnitInfo,
    decode_function_bitmask,
    parse_device_list,
    project_device,
    project_devices,
)
from fritze.errors import ParseError

DEVICE_LIST_XML = """\
<devicelist version="1" fwversion="7.57">
  <device identifier="11630 0123456" id="406" functionbitmask="1" fwversion="0.0"
          manufacturer="0x2c3c" productname="HAN-FUN">
    <present>1</present>
    <txbusy>0</txbusy>
    <name>Steckdose</name>
    <battery>80</battery>
    <batterylow>0</batterylow>
  </device>
  <device identifier="11630 0123456-1" id="2000" functionbitmask="40960" fwversion="0.0"
          manufacturer="0x2c3c" productname="HAN-FUN">
    <present>1</present>
    <txbusy>0</txbusy>
    <name>Switch</name>
    <etsiunitinfo>
      <etsideviceid>406</etsideviceid>
      <unittype>263</unittype>
      <interfaces>512,514,513</interfaces>
    </etsiunitinfo>
    <simpleonoff><state>1</state></simpleonoff>
  </device>
  <device identifier="12345 0000001" id="407" functionbitmask="1" fwversion="0.0"
          manufacturer="0x0feb" productname="HAN-FUN">
    <present>1</present>
    <txbusy>0</txbusy>
    <name>Haustuer</name>
  </device>
  <device identifier="12345 0000001-1" id="2001" functionbitmask="8208" fwversion="0.0"
          manufacturer="0x0feb" productname="HAN-FUN">
    <present>1</present>
    <txbusy>0</txbusy>
    <name>Haustuer</name>
    <etsiunitinfo>
      <etsideviceid>407</etsideviceid>
      <unittype>513</unittype>
      <interfaces>256</interfaces>
    </etsiunitinfo>
    <alert>
      <state>1</state>
      <lastalertchgtimestamp>1752247238</lastalertchgtimestamp>
    </alert>
  </device>
  <device identifier="99999 0000009-1" id="2002" functionbitmask="40960" fwversion="0.0"
          manufacturer="0x2c3c" productname="HAN-FUN">
    <present>0</present>
    <txbusy>0</txbusy>
    <name>Orphan</name>
    <etsiunitinfo>
      <etsideviceid>999</etsideviceid>
      <unittype>256</unittype>
      <interfaces>512</interfaces>
    </etsiunitinfo>
    <simpleonoff><state>0</state></simpleonoff>
  </device>
  <device identifier="08761 0000434" id="17" functionbitmask="35712" fwversion="04.16"
          manufacturer="AVM" productname="FRITZ!DECT 200">
    <present>1</present>
    <txbusy>0</txbusy>
    <name>Kuehlschrank</name>
  </device>
</devicelist>
"""


def _ts(value: int) -> str:
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M:%S")


def _raw(id: int, name: str, **kwargs: object) -> RawDevice:
    return RawDevice(id=id, identifier=f"AIN-{id}", name=name, **kwargs)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Function bitmask
# ---------------------------------------------------------------------------


class TestDecodeFunctionBitmask:
    def test_reference_mask(self):
        functions = decode_function_bitmask(40960)
        assert functions
        assert functions == (DeviceFunction.HANFUN_UNIT, DeviceFunction.SIMPLE_ON_OFF)

    def test_temperature_sensor_bit(self):
        assert 1 << DeviceFunction.TEMPERATURE_SENSOR == 256
        assert decode_function_bitmask(256) == (DeviceFunction.TEMPERATURE_SENSOR,)

    def test_fritz_dect_200(self):
        assert decode_function_bitmask(35712) == (
            DeviceFunction.AVM_POWER_METER,
            DeviceFunction.TEMPERATURE_SENSOR,
            DeviceFunction.AVM_OUTLET_SWITCH,
            DeviceFunction.AVM_MICROPHONE,
            DeviceFunction.SIMPLE_ON_OFF,
        )

    def test_bit_zero_is_reserved(self):
        assert decode_function_bitmask(1) == ()

    def test_undefined_bits_are_dropped(self):
        undefined = (1 << 1) | (1 << 3) | (1 << 12) | (1 << 14) | (1 << 19) | (1 << 21)
        assert decode_function_bitmask(undefined) == ()
        assert decode_function_bitmask(undefined | (1 << 2)) == (DeviceFunction.LIGHT,)

    def test_all_bits_set(self):
        functions = decode_function_bitmask(0xFFFFFFFF)
        expected = tuple(f for f in DeviceFunction if f is not DeviceFunction.HANFUN_DEVICE)
        assert functions == expected
        assert len(set(functions)) == len(functions)

    def test_bits_above_uint32_are_ignored(self):
        assert decode_function_bitmask((1 << 40) | (1 << 4)) == (DeviceFunction.ALARM_SENSOR,)

    def test_zero(self):
        assert decode_function_bitmask(0) == ()


# ---------------------------------------------------------------------------
# XML parsing
# ---------------------------------------------------------------------------


class TestParseDeviceList:
    def test_root_attributes(self):
        dl = parse_device_list(DEVICE_LIST_XML)
        assert dl.version == "1"
        assert dl.fw_version == "7.57"
        assert len(dl.devices) == 6

    def test_parent_record(self):
        parent = parse_device_list(DEVICE_LIST_XML).devices[0]
        assert parent.id == 406
        assert parent.identifier == "11630 0123456"
        assert parent.product_name == "HAN-FUN"
        assert parent.manufacturer == "0x2c3c"
        assert parent.name == "Steckdose"
        assert parent.present is True
        assert parent.tx_busy is False
        assert parent.battery == 80
        assert parent.battery_low is False
        assert parent.unit_info is None

    def test_unit_record(self):
        unit = parse_device_list(DEVICE_LIST_XML).devices[1]
        assert unit.function_bitmask == 40960
        assert unit.on_off == OnOffState(state=1)
        assert unit.alert is None
        assert unit.unit_info == UnitInfo(device_id=406, unit_type=263, interfaces=(512, 514, 513))
        assert unit.unit_info.device_type is DeviceType.AC_OUTLET_SIMPLE_POWER_METERING
        assert unit.unit_info.known_interfaces == (
            DeviceInterface.ON_OFF,
            DeviceInterface.COLOR_CTRL,
            DeviceInterface.LEVEL_CTRL,
        )

    def test_alert_record(self):
        unit = parse_device_list(DEVICE_LIST_XML).devices[3]
        assert unit.alert == AlertState(state=1, last_alert_change=1752247238)

    def test_button_record(self):
        xml = """<devicelist version="1"><device id="5" identifier="X">
            <name>Taster</name>
            <button identifier="X-1" id="5000">
              <name>Taster: kurz</name>
              <lastpressedtimestamp>1752247238</lastpressedtimestamp>
            </button></device></devicelist>"""
        (device,) = parse_device_list(xml).devices
        assert device.button == ButtonState(
            identifier="X-1", id="5000", name="Taster: kurz", last_pressed=1752247238
        )

    def test_empty_timestamp_is_zero(self):
        xml = """<devicelist><device id="5"><alert><state>0</state>
            <lastalertchgtimestamp></lastalertchgtimestamp></alert></device></devicelist>"""
        (device,) = parse_device_list(xml).devices
        assert device.alert == AlertState(state=0, last_alert_change=0)

    def test_unknown_unit_type(self):
        xml = """<devicelist><device id="5"><etsiunitinfo><etsideviceid>1</etsideviceid>
            <unittype>9999</unittype><interfaces>4242</interfaces></etsiunitinfo></device></devicelist>"""
        (device,) = parse_device_list(xml).devices
        assert device.unit_info is not None
        assert device.unit_info.device_type is None
        assert device.unit_info.known_interfaces == ()

    def test_accepts_bytes(self):
        assert len(parse_device_list(DEVICE_LIST_XML.encode()).devices) == 6

    def test_empty_list(self):
        assert parse_device_list("<devicelist/>").devices == ()

    def test_malformed_xml(self):
        with pytest.raises(ParseError, match="Malformed"):
            parse_device_list("<devicelist><device>")

    def test_wrong_root(self):
        with pytest.raises(ParseError, match="devicelist"):
            parse_device_list("<SessionInfo/>")

    def test_non_numeric_id(self):
        with pytest.raises(ParseError, match="Invalid value"):
            parse_device_list('<devicelist><device id="abc"/></devicelist>')

    def test_invalid_boolean(self):
        with pytest.raises(ParseError):
            parse_device_list('<devicelist><device id="1"><present>maybe</present></device></devicelist>')

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("1", True), ("t", True), ("T", True), ("true", True), ("TRUE", True), ("True", True),
            ("0", False), ("f", False), ("F", False), ("false", False), ("FALSE", False), ("False", False),
            (" 1 ", True), ("", False),
        ],
    )
    def test_boolean_spellings(self, text, expected):
        xml = f'<devicelist><device id="1"><present>{text}</present><txbusy>{text}</txbusy></device></devicelist>'
        (device,) = parse_device_list(xml).devices
        assert device.present is expected
        assert device.tx_busy is expected

    def test_mixed_case_boolean_is_rejected(self):
        with pytest.raises(ParseError):
            parse_device_list('<devicelist><device id="1"><present>tRuE</present></device></devicelist>')


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------


class TestProjectDevice:
    def test_identical_names_not_suffixed(self):
        parent = _raw(1, "Steckdose")
        unit = _raw(2, "Steckdose", unit_info=UnitInfo(device_id=1, unit_type=263))
        assert project_device(parent, unit).name == "Steckdose"

    def test_different_names_suffixed(self):
        parent = _raw(1, "Steckdose")
        unit = _raw(2, "Switch", unit_info=UnitInfo(device_id=1, unit_type=263))
        assert project_device(parent, unit).name == "Steckdose (Switch)"

    def test_defaults_without_sub_records(self):
        device = project_device(_raw(1, "A"), _raw(2, "A"))
        assert device.state_value == -1
        assert device.triggered is False
        assert device.description == ""
        assert device.functions == ()

    def test_parent_metadata(self):
        parent = RawDevice(
            id=1,
            identifier="11630 0123456",
            product_name="HAN-FUN",
            manufacturer="0x2c3c",
            fw_version="1.2",
            name="A",
        )
        unit = _raw(2, "A", function_bitmask=40960)
        device = project_device(parent, unit)
        assert device.id == 1
        assert device.identifier == "11630 0123456"
        assert device.product_name == "HAN-FUN"
        assert device.manufacturer == "0x2c3c"
        assert device.fw_version == "1.2"
        assert device.functions == (DeviceFunction.HANFUN_UNIT, DeviceFunction.SIMPLE_ON_OFF)

    def test_on_off_state(self):
        device = project_device(_raw(1, "A"), _raw(2, "A", on_off=OnOffState(state=1)))
        assert device.state_value == 1
        assert device.triggered is False
        assert device.description == "on_off=1"

    def test_alert_state(self):
        unit = _raw(2, "A", alert=AlertState(state=1, last_alert_change=1752247238))
        device = project_device(_raw(1, "A"), unit)
        assert device.state_value == 1
        assert device.triggered is True
        assert device.description == f"alert=1, lastchange={_ts(1752247238)}"

    def test_alert_not_triggered(self):
        unit = _raw(2, "A", alert=AlertState(state=0, last_alert_change=0))
        device = project_device(_raw(1, "A"), unit)
        assert device.state_value == 0
        assert device.triggered is False

    def test_alert_takes_precedence_over_on_off(self):
        unit = _raw(
            2,
            "A",
            on_off=OnOffState(state=1),
            alert=AlertState(state=0, last_alert_change=1752247238),
        )
        device = project_device(_raw(1, "A"), unit)
        assert device.state_value == 0
        assert device.description == f"on_off=1, alert=0, lastchange={_ts(1752247238)}"

    def test_button_and_battery(self):
        parent = _raw(1, "Taster", battery=90)
        unit = _raw(
            2,
            "Taster",
            button=ButtonState(identifier="X-1", id="5000", name="kurz", last_pressed=1752247238),
        )
        device = project_device(parent, unit)
        assert device.description == f"button, lastpressed={_ts(1752247238)}, battery=90%"
        assert device.state_value == -1

    def test_unit_battery_is_ignored(self):
        device = project_device(_raw(1, "A"), _raw(2, "A", battery=50))
        assert device.description == ""


class TestProjectDevices:
    def test_reference_document(self):
        devices = project_devices(parse_device_list(DEVICE_LIST_XML).devices)
        assert [d.identifier for d in devices] == ["11630 0123456", "12345 0000001"]

        socket, door = devices
        assert socket.name == "Steckdose (Switch)"
        assert socket.description == "on_off=1, battery=80%"
        assert socket.state_value == 1
        assert socket.triggered is False

        assert door.name == "Haustuer"
        assert door.triggered is True
        assert door.functions == (DeviceFunction.ALARM_SENSOR, DeviceFunction.HANFUN_UNIT)

    def test_dangling_reference_is_skipped(self):
        unit = _raw(2, "Orphan", unit_info=UnitInfo(device_id=99, unit_type=256))
        assert project_devices([unit]) == []

    def test_records_without_unit_info_are_skipped(self):
        assert project_devices([_raw(1, "A"), _raw(2, "B")]) == []

    def test_returns_device_snapshots(self):
        parent = _raw(1, "A")
        unit = _raw(2, "B", unit_info=UnitInfo(device_id=1, unit_type=256))
        (device,) = project_devices(iter([parent, unit]))
        assert isinstance(device, Device)
        assert device.id == 1

    def test_multiple_units_per_parent(self):
        parent = _raw(1, "Taster")
        units = [
            _raw(10 + i, f"Taste {i}", unit_info=UnitInfo(device_id=1, unit_type=273))
            for i in range(3)
        ]
        devices = project_devices([*units, parent])
        assert [d.name for d in devices] == [
            "Taster (Taste 0)",
            "Taster (Taste 1)",
            "Taster (Taste 2)",
        ]


class TestDeviceToDict:
    def test_function_names(self):
        device = Device(
            id=1,
            product_name="HAN-FUN",
            identifier="X",
            manufacturer="M",
            fw_version="1",
            name="A",
            description="on_off=1",
            state_value=1,
            functions=(DeviceFunction.SIMPLE_ON_OFF,),
        )
        data = device.to_dict()
        assert data["functions"] == ["SIMPLE_ON_OFF"]
        assert data["stateValue"] == 1
        assert data["triggered"] is False
