"""
Error types for Looking Glass device access.

Every failure that can end the read of a single display is a
``LookingGlassError`` subclass carrying an ``ErrorKind``.  The
enumerator in device_detector.py catches these per display and stores
them in the display's ``DeviceOutcome``; nothing here is retried.

Two categories:
  • transport: the device handle, the write, or the echo check failed
  • parse:     the bytes arrived but are not a usable calibration
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Discriminator for per-display failures."""
    TRANSPORT = "transport"
    WRITE_MISMATCH = "write-mismatch"
    CONFIRMATION_MISMATCH = "confirmation-mismatch"
    ENCODING = "encoding"
    SCHEMA_PARSE = "schema-parse"
    UNSUPPORTED_VERSION = "unsupported-version"

    @property
    def is_transport(self) -> bool:
        return self in (
            ErrorKind.TRANSPORT,
            ErrorKind.WRITE_MISMATCH,
            ErrorKind.CONFIRMATION_MISMATCH,
        )


class LookingGlassError(Exception):
    """Base class for all device and decode errors."""
    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return f"{self.kind.value}: {self.message}"


# =========================================================================
# Transport category
# =========================================================================

class TransportError(LookingGlassError):
    """Open, write or read failed at the device-handle level.

    Also raised by the enumerator when the HID backend cannot list
    devices at all.
    """
    kind = ErrorKind.TRANSPORT


class WriteMismatchError(TransportError):
    """A fixed-size request report was only partially written."""
    kind = ErrorKind.WRITE_MISMATCH

    def __init__(self, expected: int, written: int):
        super().__init__(
            f"wrote {written} of {expected} request bytes"
        )
        self.expected = expected
        self.written = written


class ConfirmationMismatchError(TransportError):
    """The response does not echo the requested page address.

    .. attribute:: address

        Page address that was requested.

    .. attribute:: response

        Raw response bytes (echo header included), or None.
    """
    kind = ErrorKind.CONFIRMATION_MISMATCH

    def __init__(self, address: int, response: Optional[bytes], message: str = ""):
        super().__init__(message or f"page {address} response did not echo its address")
        self.address = address
        self.response = response


# =========================================================================
# Parse category
# =========================================================================

class DecodeError(LookingGlassError):
    """The assembled document could not be turned into a Calibration."""
    kind = ErrorKind.SCHEMA_PARSE


class EncodingError(DecodeError):
    """Assembled document bytes are not valid UTF-8."""
    kind = ErrorKind.ENCODING


class SchemaParseError(DecodeError):
    """Document is not JSON or does not match the calibration schema."""
    kind = ErrorKind.SCHEMA_PARSE


class UnsupportedVersionError(DecodeError):
    """Document declares a configVersion other than the supported one."""
    kind = ErrorKind.UNSUPPORTED_VERSION

    def __init__(self, version: str, supported: str):
        super().__init__(
            f"configVersion {version!r} is not supported (expected {supported!r})"
        )
        self.version = version
        self.supported = supported
