"""Python API and CLI bridging FRITZ!Box smart-home devices to MQTT."""

from fritze.bridge import Bridge, BridgeError
from fritze.client import Client, Session
from fritze.controller import Controller, DeviceEvent, DiffHandler, EventKind
from fritze.devices import Device, DeviceFunction, decode_function_bitmask
from fritze.errors import (
    AuthenticationError,
    FritzError,
    InvalidSessionError,
    ParseError,
    ProtocolError,
    TransportError,
)

__all__ = [
    "AuthenticationError",
    "Bridge",
    "BridgeError",
    "Client",
    "Controller",
    "Device",
    "DeviceEvent",
    "DeviceFunction",
    "DiffHandler",
    "EventKind",
    "FritzError",
    "InvalidSessionError",
    "ParseError",
    "ProtocolError",
    "Session",
    "TransportError",
    "decode_function_bitmask",
]
