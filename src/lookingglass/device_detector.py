#!/usr/bin/env python3
"""
Looking Glass Display Detector
Finds Looking Glass displays and reads each one's calibration.

Supported devices (HID, feature-report EEPROM protocol):
- Microchip:    VID=0x04D8, PID=0xEF7E  (all Looking Glass revisions)

Every display is processed to completion (open, read, decode, close)
before the next one starts.  A display that cannot be opened or read
gets a failed ``DeviceOutcome``; it never stops the scan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from . import conf
from .calibration import Calibration, decode_calibration
from .constants import LOOKING_GLASS_PID, LOOKING_GLASS_VID, READ_TIMEOUT_MS
from .eeprom_reader import EepromReader
from .errors import ErrorKind, LookingGlassError
from .hid_transport import Candidate, HidTransport, find_candidates, open_transport

log = logging.getLogger(__name__)

CandidateFinder = Callable[[int, int, str], List[Candidate]]
TransportOpener = Callable[[Candidate], HidTransport]


@dataclass(frozen=True)
class DeviceOutcome:
    """Result of reading one display: a Calibration or a typed error, never both."""
    calibration: Optional[Calibration] = None
    error: Optional[LookingGlassError] = None

    def __post_init__(self):
        if (self.calibration is None) == (self.error is None):
            raise ValueError("DeviceOutcome needs exactly one of calibration or error")

    @classmethod
    def success(cls, calibration: Calibration) -> 'DeviceOutcome':
        return cls(calibration=calibration)

    @classmethod
    def failure(cls, error: LookingGlassError) -> 'DeviceOutcome':
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.calibration is not None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None

    @property
    def message(self) -> str:
        return self.error.message if self.error is not None else ""


def read_document(transport: HidTransport, timeout_ms: int = READ_TIMEOUT_MS) -> str:
    """Read the raw calibration JSON from an open transport."""
    transport.set_blocking(True)
    return EepromReader(transport, timeout_ms).read_config_string()


def read_calibration(transport: HidTransport, timeout_ms: int = READ_TIMEOUT_MS) -> Calibration:
    """Read and decode the calibration from an open transport.

    Raises:
        LookingGlassError: Any transport or decode failure.
    """
    return decode_calibration(read_document(transport, timeout_ms))


def read_candidate(
    candidate: Candidate,
    opener: TransportOpener = open_transport,
    timeout_ms: int = READ_TIMEOUT_MS,
) -> DeviceOutcome:
    """Open, read, decode and close one candidate.  Never raises LookingGlassError."""
    try:
        transport = opener(candidate)
    except LookingGlassError as e:
        log.warning("Cannot open %s: %s", candidate.path, e)
        return DeviceOutcome.failure(e)

    try:
        calibration = read_calibration(transport, timeout_ms)
    except LookingGlassError as e:
        log.warning("Reading %s failed: %s", candidate.path, e)
        return DeviceOutcome.failure(e)
    finally:
        transport.close()

    log.info("Read calibration from %s (serial %s)", candidate.path, calibration.serial)
    return DeviceOutcome.success(calibration)


def detect_displays(
    backend: Optional[str] = None,
    timeout_ms: Optional[int] = None,
    finder: CandidateFinder = find_candidates,
    opener: TransportOpener = open_transport,
) -> Dict[Candidate, DeviceOutcome]:
    """Read every connected Looking Glass.

    Args:
        backend: 'auto', 'hidapi' or 'pyusb'; None uses the saved config.
        timeout_ms: Per-read timeout; None uses the saved config.

    Returns:
        Mapping of each candidate to its outcome.  Empty when no display
        is connected.

    Raises:
        TransportError: If the HID backend cannot enumerate devices at all.
    """
    if backend is None:
        backend = conf.get_backend()
    if timeout_ms is None:
        timeout_ms = conf.get_read_timeout_ms()

    candidates = finder(LOOKING_GLASS_VID, LOOKING_GLASS_PID, backend)
    if not candidates:
        log.debug("No Looking Glass displays found")

    outcomes: Dict[Candidate, DeviceOutcome] = {}
    for candidate in candidates:
        outcomes[candidate] = read_candidate(candidate, opener, timeout_ms)
    return outcomes
