"""
Looking Glass Linux - calibration reader for Looking Glass displays

Finds Looking Glass holographic displays on the USB HID bus and reads
the per-unit calibration (lenticular pitch, slope, center, DPI and
native resolution) stored in the display's EEPROM.

Usage:
    # As a library
    from lookingglass import detect_displays
    for candidate, outcome in detect_displays().items():
        if outcome.ok:
            print(candidate.path, outcome.calibration.pitch)
        else:
            print(candidate.path, outcome.kind, outcome.message)

    # Command line
    lookingglass detect        # List displays
    lookingglass calibration   # Read calibration
"""

from lookingglass.__version__ import __version__

# Core exports
from lookingglass.calibration import Calibration, decode_calibration
from lookingglass.device_detector import DeviceOutcome, detect_displays, read_calibration
from lookingglass.eeprom_reader import EepromReader
from lookingglass.errors import (
    ConfirmationMismatchError,
    DecodeError,
    EncodingError,
    ErrorKind,
    LookingGlassError,
    SchemaParseError,
    TransportError,
    UnsupportedVersionError,
    WriteMismatchError,
)
from lookingglass.hid_transport import Candidate, HidTransport, find_candidates

__all__ = [
    # Version
    "__version__",
    # Core
    "Calibration",
    "decode_calibration",
    "DeviceOutcome",
    "detect_displays",
    "read_calibration",
    "EepromReader",
    # Transport
    "Candidate",
    "HidTransport",
    "find_candidates",
    # Errors
    "ErrorKind",
    "LookingGlassError",
    "TransportError",
    "WriteMismatchError",
    "ConfirmationMismatchError",
    "DecodeError",
    "EncodingError",
    "SchemaParseError",
    "UnsupportedVersionError",
]
