"""
Exceptions raised by the NOTAM dashboard.

Exception Hierarchy:
    NotamError (base)
    ├── InvalidAirportCodeError
    └── UpstreamError
        ├── RateLimitedError
        └── MalformedPayloadError
"""
from typing import Iterable, Optional


class NotamError(Exception):
    """Base exception for all dashboard errors."""


class InvalidAirportCodeError(NotamError, ValueError):
    """One or more airport codes are not four uppercase letters."""

    def __init__(self, codes: Iterable[str]):
        self.codes = list(codes)
        super().__init__(
            f"Invalid ICAO code(s): {', '.join(repr(c) for c in self.codes)}. "
            "Must be 4 uppercase letters."
        )


class UpstreamError(NotamError):
    """
    An upstream NOTAM provider could not be queried.

    Attributes:
        message: Human-readable error message
        status_code: HTTP status returned by the provider, if any
        details: Extra context (response excerpt, exception text)
    """

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        base_msg = self.message
        if self.status_code is not None:
            base_msg += f" (HTTP {self.status_code})"
        if self.details:
            base_msg += f" | {self.details}"
        return base_msg


class RateLimitedError(UpstreamError):
    """The provider answered 429."""


class MalformedPayloadError(UpstreamError):
    """The provider answered with a payload we cannot locate items in."""
