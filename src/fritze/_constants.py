"""Internal constants for the FRITZ!Box AHA interface."""

from __future__ import annotations

DEFAULT_BASE_URL = "https://192.168.178.1"

LOGIN_PATH = "/login_sid.lua"
HOMEAUTO_PATH = "/webservices/homeautoswitch.lua"

CHALLENGE_VERSION = "2"
SENTINEL_SID = "0000000000000000"

SESSION_TIMEOUT = 20 * 60  # seconds of inactivity before the box drops a SID
POLL_INTERVAL = 2.0  # seconds between device-list fetches
HTTP_TIMEOUT = 15  # seconds per request

MQTT_CLIENT_ID = "fritze-mqtt"
MQTT_DEFAULT_HOST = "localhost"
MQTT_DEFAULT_PORT = 1883
MQTT_DEFAULT_TOPIC = "test"
