"""Exceptions raised by :mod:`fritze`."""

from __future__ import annotations


class FritzError(Exception):
    """Base class for all errors raised while talking to the box."""


class ProtocolError(FritzError):
    """Raised when the login challenge or its salts are malformed."""


class AuthenticationError(FritzError):
    """Raised when the box rejects the credentials (sentinel SID returned)."""


class TransportError(FritzError):
    """Raised when an HTTP request fails or returns an error status."""


class ParseError(FritzError):
    """Raised when an XML document from the box cannot be decoded."""


class InvalidSessionError(FritzError):
    """Raised when an operation needs a valid session but it has expired or was logged out."""
