"""Exceptions raised while fetching and normalizing bus data."""

from typing import Optional


class BusTrackError(Exception):
    """Base class for all bustrack errors."""


class TransportError(BusTrackError):
    """Network failure or non-2xx response from the upstream API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ResponseFormatError(BusTrackError):
    """Response body is not JSON, reports failure, or lacks a required field."""


class DecodeError(BusTrackError):
    """An encoded polyline could not be decoded."""


class CapabilityUnavailableError(BusTrackError):
    """The configured upstream does not offer the requested data at all.

    Retrying will not change the outcome, which is what separates this from a
    transient :class:`TransportError`.
    """
