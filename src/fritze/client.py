"""FRITZ!Box AHA HTTP client.

Handles the version-2 challenge-response login, logout and device-list
retrieval. A :class:`Session` returned by :meth:`Client.login` is passed
explicitly into every authenticated call::

    from fritze import Client

    client = Client("https://192.168.178.1")
    session = await client.login("smarthome", "secret")
    devices = await client.fetch_devices(session)
    await client.logout(session)
"""

from __future__ import annotations

import asyncio
import logging
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

import aiohttp

from fritze._constants import (
    CHALLENGE_VERSION,
    DEFAULT_BASE_URL,
    HOMEAUTO_PATH,
    HTTP_TIMEOUT,
    LOGIN_PATH,
    SENTINEL_SID,
    SESSION_TIMEOUT,
)
from fritze._crypto import calculate_response, parse_challenge
from fritze.devices import Device, parse_device_list, project_devices
from fritze.errors import AuthenticationError, InvalidSessionError, ParseError, TransportError

logger = logging.getLogger(__name__)


class Session:
    """A login session identified by the box-issued SID.

    Valid while the SID is not the all-zero sentinel and the session has
    been used within the last 20 minutes. Only device fetches refresh
    :attr:`last_used_at`; login and logout never do.
    """

    def __init__(
        self,
        sid: str,
        *,
        created_at: float | None = None,
        last_used_at: float | None = None,
    ) -> None:
        self._sid = sid
        self._created_at = time.time() if created_at is None else created_at
        self._last_used_at = self._created_at if last_used_at is None else last_used_at

    def __repr__(self) -> str:
        return f"Session(sid={self._sid!r}, last_used_at={self._last_used_at})"

    @property
    def sid(self) -> str:
        """Session id sent with every authenticated request."""
        return self._sid

    @property
    def created_at(self) -> float:
        return self._created_at

    @property
    def last_used_at(self) -> float:
        return self._last_used_at

    def is_valid(self, now: float | None = None) -> bool:
        """Whether the box still accepts this SID."""
        if self._sid == SENTINEL_SID:
            return False
        if now is None:
            now = time.time()
        return now - self._last_used_at < SESSION_TIMEOUT

    def touch(self, now: float | None = None) -> None:
        """Record one authenticated request."""
        self._last_used_at = time.time() if now is None else now

    def invalidate(self) -> None:
        """Drop the SID locally; the session is never valid afterwards."""
        self._sid = SENTINEL_SID


@dataclass
class SessionInfo:
    """Decoded ``<SessionInfo>`` document from ``login_sid.lua``."""

    sid: str
    challenge: str = ""
    block_time: int = 0
    rights: dict[str, int] = field(default_factory=dict)
    users: list[str] = field(default_factory=list)
    last_user: str | None = None


class Client:
    """Client for one FRITZ!Box.

    Every request opens a short-lived :class:`aiohttp.ClientSession`.
    Certificate validation is disabled because boxes ship self-signed
    certificates.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, *, timeout: float = HTTP_TIMEOUT) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> Session:
        """Authenticate and return a new :class:`Session`.

        Waits out any ``BlockTime`` the box reports before answering the
        challenge.

        Raises:
            ProtocolError: If the challenge is malformed.
            AuthenticationError: If the box answers with the sentinel SID.
            TransportError: On network or HTTP failure.
            ParseError: If a response is not a valid ``SessionInfo`` document.
        """
        login_url = f"{self._base_url}{LOGIN_PATH}"
        params = {"version": CHALLENGE_VERSION}
        async with aiohttp.ClientSession(timeout=self._timeout) as http:
            initial = _parse_session_info(await _request_text(http, "GET", login_url, params=params))
            logger.debug("Initial session info: %s", initial)

            if initial.block_time > 0:
                logger.info("Login blocked by the box, waiting for %d seconds", initial.block_time)
                await asyncio.sleep(initial.block_time)

            response = calculate_response(parse_challenge(initial.challenge), password)
            body = await _request_text(
                http,
                "POST",
                login_url,
                params=params,
                data={"username": username, "response": response},
            )
        info = _parse_session_info(body)
        logger.debug("Login session info: %s", info)

        if not info.sid or info.sid == SENTINEL_SID:
            raise AuthenticationError(f"Login failed for user {username!r}")

        logger.info("Logged in as user=%s at %s with sid=%s", username, self._base_url, info.sid)
        return Session(info.sid)

    async def logout(self, session: Session) -> None:
        """End *session* on the box.

        The box's answer is not checked: a failed logout request is logged
        and ignored. The session is invalidated locally either way.

        Raises :class:`InvalidSessionError` if the session already expired
        or was logged out.
        """
        if not session.is_valid():
            raise InvalidSessionError("Session is not valid")

        logout_url = f"{self._base_url}{LOGIN_PATH}?version={CHALLENGE_VERSION}&logout&sid={session.sid}"
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as http:
                await _request_text(http, "GET", logout_url)
        except TransportError as e:
            logger.warning("Logout request failed: %s", e)
        else:
            logger.info("Logged out from %s", self._base_url)
        finally:
            session.invalidate()

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def fetch_devices(self, session: Session) -> list[Device]:
        """Fetch the device list and project it into :class:`Device` snapshots.

        Touches *session* once per successful request. Units whose parent
        record is missing from the document are left out.

        Raises:
            InvalidSessionError: If *session* is no longer valid.
            TransportError: On network or HTTP failure.
            ParseError: If the device list is malformed.
        """
        if not session.is_valid():
            raise InvalidSessionError("Session is not valid")

        async with aiohttp.ClientSession(timeout=self._timeout) as http:
            body = await _request_text(
                http,
                "GET",
                f"{self._base_url}{HOMEAUTO_PATH}",
                params={"sid": session.sid, "switchcmd": "getdevicelistinfos"},
            )
        session.touch()
        logger.debug("Device list: %s", body)

        device_list = parse_device_list(body)
        return project_devices(device_list.devices)


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


async def _request_text(
    http: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    params: dict[str, str] | None = None,
    data: dict[str, str] | None = None,
) -> str:
    """Perform one request and return the body, wrapping failures in :class:`TransportError`."""
    try:
        async with http.request(method, url, params=params, data=data, ssl=False) as resp:
            resp.raise_for_status()
            return await resp.text()
    except (aiohttp.ClientError, TimeoutError) as e:
        raise TransportError(f"{method} {url} failed: {e}") from e


def _parse_session_info(document: str) -> SessionInfo:
    """Decode a ``<SessionInfo>`` document."""
    try:
        root = ET.fromstring(document)
    except ET.ParseError as e:
        raise ParseError(f"Malformed session info: {e}") from e
    if root.tag != "SessionInfo":
        raise ParseError(f"Unexpected root element <{root.tag}>, expected <SessionInfo>")

    block_time_text = (root.findtext("BlockTime") or "0").strip() or "0"
    try:
        block_time = int(block_time_text)
        rights: dict[str, int] = {}
        rights_el = root.find("Rights")
        if rights_el is not None:
            names = [(el.text or "").strip() for el in rights_el.findall("Name")]
            access = [int((el.text or "0").strip() or "0") for el in rights_el.findall("Access")]
            rights = dict(zip(names, access))
    except ValueError as e:
        raise ParseError(f"Invalid value in session info: {e}") from e

    users: list[str] = []
    last_user: str | None = None
    for user_el in root.iterfind("Users/User"):
        username = (user_el.text or "").strip()
        users.append(username)
        if user_el.get("last") == "1":
            last_user = username

    return SessionInfo(
        sid=(root.findtext("SID") or "").strip(),
        challenge=(root.findtext("Challenge") or "").strip(),
        block_time=block_time,
        rights=rights,
        users=users,
        last_user=last_user,
    )
