"""Error taxonomy for ringscan.

Only ``ConfigurationError`` is fatal. Everything else is recovered close to
where it happens: the profiler falls back to default geometry, the live
controller resumes scanning, and the remote client turns outages into an
advisory notice.
"""

from __future__ import annotations


class RingScanError(Exception):
    """Base class for all ringscan errors."""


class ConfigurationError(RingScanError, ValueError):
    """Invalid construction parameters (e.g. an even sampling window)."""


class GeometryNotFound(RingScanError):
    """No ray produced a usable inner/outer edge pair."""


class DecodeImplausible(RingScanError):
    """Decoded bits are degenerate (all zeros, all ones or wrong length)."""

    def __init__(self, bits: list[int], expected_length: int) -> None:
        self.bits = list(bits)
        self.expected_length = expected_length
        super().__init__(
            f"Implausible bit sequence {''.join(str(b) for b in bits)!r} "
            f"(expected {expected_length} mixed bits)"
        )


class CaptureFailure(RingScanError):
    """High-resolution capture or its decode failed."""


class RemoteServiceUnavailable(RingScanError):
    """The optional remote decode service failed or answered non-2xx."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
