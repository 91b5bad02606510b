"""Internal helpers for the FRITZ!OS version-2 login challenge."""

from __future__ import annotations

from dataclasses import dataclass

from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2

from fritze._constants import CHALLENGE_VERSION
from fritze.errors import ProtocolError

_KEY_LENGTH = 32


@dataclass(frozen=True)
class Challenge:
    """A parsed ``2$<iter1>$<salt1>$<iter2>$<salt2>`` login challenge."""

    version: str
    iterations1: int
    salt1: str
    iterations2: int
    salt2: str


def parse_challenge(text: str) -> Challenge:
    """Split a challenge string into iteration counts and hex salts.

    Raises :class:`ProtocolError` unless the string has exactly five
    ``$``-separated fields, the version is ``2`` and both iteration
    counts are non-negative integers.
    """
    parts = text.split("$")
    if len(parts) != 5 or parts[0] != CHALLENGE_VERSION:
        raise ProtocolError(f"Invalid challenge format or unsupported version: {text!r}")
    return Challenge(
        version=parts[0],
        iterations1=_parse_iterations(parts[1]),
        salt1=parts[2],
        iterations2=_parse_iterations(parts[3]),
        salt2=parts[4],
    )


def calculate_response(challenge: Challenge, password: str) -> str:
    """Derive the login response for *challenge* and a plaintext *password*.

    The box expects ``<salt2>$<hex(hash2)>`` where::

        hash1 = PBKDF2-HMAC-SHA256(password, salt1, iter1)
        hash2 = PBKDF2-HMAC-SHA256(hash1, salt2, iter2)
    """
    salt1 = _unhex(challenge.salt1)
    salt2 = _unhex(challenge.salt2)
    hash1 = _pbkdf2_sha256(password.encode("utf-8"), salt1, challenge.iterations1)
    hash2 = _pbkdf2_sha256(hash1, salt2, challenge.iterations2)
    return f"{challenge.salt2}${hash2.hex()}"


def _pbkdf2_sha256(secret: bytes, salt: bytes, count: int) -> bytes:
    result: bytes = PBKDF2(secret, salt, dkLen=_KEY_LENGTH, count=count, hmac_hash_module=SHA256)
    return result


def _parse_iterations(field: str) -> int:
    if not (field.isascii() and field.isdigit()):
        raise ProtocolError(f"Invalid iteration count in challenge: {field!r}")
    return int(field)


def _unhex(salt: str) -> bytes:
    try:
        return bytes.fromhex(salt)
    except ValueError:
        raise ProtocolError(f"Salt is not valid hex: {salt!r}") from None
