#!/usr/bin/env python3
"""
HID transport layer for Looking Glass displays.

The display exposes a single vendor-defined HID interface.  Calibration
is read with feature reports (request) and input reports (response);
this module only moves bytes, the paging protocol lives in
eeprom_reader.py.

The ``HidTransport`` ABC abstracts the raw HID I/O so that:
  • Tests can inject a fake transport (no real hardware needed).
  • ``HidApiTransport`` talks to the kernel hidraw driver via HIDAPI.
  • ``PyUsbTransport`` talks to the device directly via pyusb (libusb),
    issuing HID class requests itself.

Linux dependencies:
  • pyusb:  ``pip install pyusb``  (needs libusb1: ``apt install libusb-1.0-0``)
  • hidapi: ``pip install hidapi`` (needs libhidapi: ``apt install libhidapi-dev``)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional

import usb.core
import usb.util

from .constants import (
    LOOKING_GLASS_PID,
    LOOKING_GLASS_VID,
    READ_CHUNK_SIZE,
    READ_TIMEOUT_MS,
)
from .errors import TransportError

# hidapi is optional ([hid] extra)
try:
    import hid as hidapi
    HIDAPI_AVAILABLE = True
except ImportError:
    HIDAPI_AVAILABLE = False

log = logging.getLogger(__name__)

BACKEND_HIDAPI = "hidapi"
BACKEND_PYUSB = "pyusb"
BACKEND_AUTO = "auto"
BACKENDS = (BACKEND_AUTO, BACKEND_HIDAPI, BACKEND_PYUSB)

PERMISSION_HINT = (
    "might lack permissions? Run 'sudo lookingglass setup-udev' and replug the display"
)

# =========================================================================
# HID class request constants (USB HID 1.11, section 7.2)
# =========================================================================

HID_REQ_TYPE_OUT = 0x21      # host-to-device | class | interface
HID_REQ_SET_REPORT = 0x09
HID_REPORT_TYPE_FEATURE = 0x03

USB_INTERFACE = 0

# Control transfer timeout (ms) for the SET_REPORT request
CONTROL_TIMEOUT_MS = 1000


# =========================================================================
# Candidate
# =========================================================================

@dataclass(frozen=True)
class Candidate:
    """A device matching the Looking Glass VID/PID, not yet opened.

    ``path`` is the hidraw path for the hidapi backend and
    ``"<bus>-<address>"`` for the pyusb backend.  ``serial_number`` is
    the USB/HID serial string, which is unrelated to the calibration
    serial stored in EEPROM.
    """
    path: str
    vid: int = LOOKING_GLASS_VID
    pid: int = LOOKING_GLASS_PID
    serial_number: str = ""
    product: str = ""
    manufacturer: str = ""
    backend: str = BACKEND_HIDAPI

    @property
    def vid_pid(self) -> str:
        return f"{self.vid:04x}:{self.pid:04x}"


# =========================================================================
# Abstract HID transport
# =========================================================================

class HidTransport(ABC):
    """Abstract report-based HID transport, mockable for testing."""

    def __init__(self, candidate: Candidate):
        self.candidate = candidate

    @abstractmethod
    def open(self) -> None:
        """Open the device.  Raises TransportError on failure."""

    @abstractmethod
    def close(self) -> None:
        """Release the device.  Safe to call more than once."""

    @abstractmethod
    def set_blocking(self, blocking: bool) -> None:
        """Switch between blocking and non-blocking reads."""

    @abstractmethod
    def write_report(self, data: bytes) -> int:
        """Send *data* (report id first) as a feature report.

        Returns the number of bytes written, report id byte included.
        """

    @abstractmethod
    def read_chunk(self, timeout_ms: int = READ_TIMEOUT_MS) -> Optional[bytes]:
        """Read one input report.

        Returns the bytes read, or None when nothing arrived within
        *timeout_ms* ("no data ready").
        """

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the device is currently open."""

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()


# =========================================================================
# Real transport: HIDAPI  (hidraw / libusb via libhidapi)
# =========================================================================

class HidApiTransport(HidTransport):
    """HID transport using HIDAPI (hidapi library).

    Uses the OS HID driver, so no kernel driver detach is needed and
    access is governed by the hidraw node permissions.

    Requires: ``pip install hidapi`` + ``apt install libhidapi-dev``
    """

    def __init__(self, candidate: Candidate):
        if not HIDAPI_AVAILABLE:
            raise TransportError(
                "hidapi is not installed. Install with: pip install hidapi\n"
                "Also need libhidapi: apt install libhidapi-dev (Debian/Ubuntu) "
                "or dnf install hidapi-devel (Fedora)"
            )
        super().__init__(candidate)
        self._device: Any = None
        self._is_open = False

    def open(self) -> None:
        """Open the HID device by its hidraw path."""
        device = hidapi.device()
        try:
            device.open_path(self.candidate.path.encode())
        except (OSError, ValueError) as e:
            raise TransportError(
                f"cannot open {self.candidate.path}: {e} ({PERMISSION_HINT})"
            ) from e
        self._device = device
        self._is_open = True
        log.debug("Opened %s via hidapi", self.candidate.path)

    def close(self) -> None:
        """Close HID device."""
        if self._device is not None:
            try:
                self._device.close()
            except Exception as e:
                log.debug("hidapi close: %s", e)
            self._device = None
        self._is_open = False

    def _require_open(self) -> Any:
        if not self._is_open or self._device is None:
            raise TransportError("transport not open")
        return self._device

    def set_blocking(self, blocking: bool) -> None:
        device = self._require_open()
        if device.set_nonblocking(0 if blocking else 1) == -1:
            raise TransportError(f"cannot set blocking mode on {self.candidate.path}")

    def write_report(self, data: bytes) -> int:
        """Send a feature report.

        HIDAPI expects the report id as the first byte; with report id 0
        the returned count still includes that byte.
        """
        device = self._require_open()
        try:
            written = device.send_feature_report(bytes(data))
        except (OSError, ValueError) as e:
            raise TransportError(f"feature report write failed: {e}") from e
        if written < 0:
            raise TransportError("feature report write failed")
        return written

    def read_chunk(self, timeout_ms: int = READ_TIMEOUT_MS) -> Optional[bytes]:
        """Read one input report.

        HIDAPI returns an empty list on timeout, which is reported as
        "no data ready".
        """
        device = self._require_open()
        try:
            data = device.read(READ_CHUNK_SIZE, timeout_ms)
        except (OSError, ValueError) as e:
            raise TransportError(f"input report read failed: {e}") from e
        if not data:
            return None
        return bytes(data)

    @property
    def is_open(self) -> bool:
        return self._is_open


# =========================================================================
# Real transport: PyUSB  (libusb backend)
# =========================================================================
# HID class requests issued by hand:
#   SET_REPORT(Feature) on the control endpoint for requests
#   interrupt IN endpoint reads for responses

class PyUsbTransport(HidTransport):
    """HID transport using pyusb (libusb backend).

    Detaches the kernel usbhid driver, claims interface 0, and issues
    SET_REPORT control transfers for requests.  Responses are read from
    the interrupt IN endpoint, auto-detected from the descriptor.

    Requires: ``pip install pyusb`` + ``apt install libusb-1.0-0``
    """

    def __init__(self, candidate: Candidate):
        super().__init__(candidate)
        self._device: Any = None
        self._is_open = False
        self._blocking = True
        self._ep_in: Optional[int] = None

    def _find_device(self) -> Any:
        bus, _, address = self.candidate.path.partition("-")
        try:
            found = usb.core.find(
                find_all=True,
                idVendor=self.candidate.vid,
                idProduct=self.candidate.pid,
            )
            for dev in found or []:
                if f"{dev.bus}-{dev.address}" == f"{int(bus)}-{int(address)}":
                    return dev
        except (usb.core.NoBackendError, ValueError) as e:
            raise TransportError(f"USB lookup failed: {e}") from e
        return None

    def open(self) -> None:
        """Find the USB device, detach usbhid, claim interface, detect endpoint."""
        device = self._find_device()
        if device is None:
            raise TransportError(
                f"USB device not found: {self.candidate.vid_pid} at {self.candidate.path}"
            )

        detached = False
        try:
            if device.is_kernel_driver_active(USB_INTERFACE):
                device.detach_kernel_driver(USB_INTERFACE)
                detached = True
                log.debug("Detached kernel driver from interface %d", USB_INTERFACE)
        except (usb.core.USBError, NotImplementedError) as e:
            log.debug("Kernel driver detach: %s", e)

        try:
            usb.util.claim_interface(device, USB_INTERFACE)
        except usb.core.USBError as e:
            if detached:
                # Hand the interface back to usbhid so hidraw stays usable
                try:
                    device.attach_kernel_driver(USB_INTERFACE)
                except usb.core.USBError as attach_err:
                    log.debug("Kernel driver reattach: %s", attach_err)
            usb.util.dispose_resources(device)
            raise TransportError(
                f"cannot claim {self.candidate.path}: {e} ({PERMISSION_HINT})"
            ) from e

        self._device = device
        self._is_open = True
        self._detect_endpoint()
        if self._ep_in is None:
            self.close()
            raise TransportError(f"no interrupt IN endpoint on {self.candidate.path}")

    def close(self) -> None:
        """Release interface and dispose libusb resources."""
        if self._device is not None:
            try:
                usb.util.release_interface(self._device, USB_INTERFACE)
            except usb.core.USBError as e:
                log.debug("Release interface: %s", e)
            usb.util.dispose_resources(self._device)
            self._device = None
        self._is_open = False
        self._ep_in = None

    def _detect_endpoint(self) -> None:
        """Find the interrupt IN endpoint on interface 0."""
        try:
            cfg = self._device.get_active_configuration()
            intf = cfg[(USB_INTERFACE, 0)]
            for ep in intf:
                if usb.util.endpoint_direction(ep.bEndpointAddress) == usb.util.ENDPOINT_IN:
                    self._ep_in = ep.bEndpointAddress
                    break
            log.debug("Auto-detected IN endpoint: 0x%02x", self._ep_in or 0)
        except (usb.core.USBError, KeyError) as e:
            log.debug("Endpoint auto-detection failed: %s", e)

    def _require_open(self) -> Any:
        if not self._is_open or self._device is None:
            raise TransportError("transport not open")
        return self._device

    def set_blocking(self, blocking: bool) -> None:
        # libusb reads always wait up to their timeout
        self._require_open()
        self._blocking = blocking

    def write_report(self, data: bytes) -> int:
        """SET_REPORT(Feature).  The report id travels in wValue, not the payload."""
        device = self._require_open()
        report_id = data[0]
        try:
            written = device.ctrl_transfer(
                HID_REQ_TYPE_OUT,
                HID_REQ_SET_REPORT,
                (HID_REPORT_TYPE_FEATURE << 8) | report_id,
                USB_INTERFACE,
                bytes(data[1:]),
                CONTROL_TIMEOUT_MS,
            )
        except usb.core.USBError as e:
            raise TransportError(f"SET_REPORT failed: {e}") from e
        # Count the report id byte, matching hidraw/HIDAPI
        return written + 1

    def read_chunk(self, timeout_ms: int = READ_TIMEOUT_MS) -> Optional[bytes]:
        device = self._require_open()
        try:
            data = device.read(self._ep_in, READ_CHUNK_SIZE, timeout=timeout_ms)
        except usb.core.USBTimeoutError:
            return None
        except usb.core.USBError as e:
            raise TransportError(f"interrupt read failed: {e}") from e
        return bytes(data)

    @property
    def is_open(self) -> bool:
        return self._is_open


# =========================================================================
# Backend selection + discovery
# =========================================================================

def resolve_backend(backend: str = BACKEND_AUTO) -> str:
    """Map 'auto' to a concrete backend; reject unusable choices."""
    if backend == BACKEND_AUTO:
        return BACKEND_HIDAPI if HIDAPI_AVAILABLE else BACKEND_PYUSB
    if backend == BACKEND_HIDAPI and not HIDAPI_AVAILABLE:
        raise TransportError("hidapi backend requested but hidapi is not installed")
    if backend not in (BACKEND_HIDAPI, BACKEND_PYUSB):
        raise TransportError(f"unknown HID backend: {backend!r}")
    return backend


def _find_hidapi(vid: int, pid: int) -> List[Candidate]:
    try:
        infos = hidapi.enumerate(vid, pid)
    except (OSError, ValueError) as e:
        raise TransportError(f"HID enumeration failed: {e}") from e

    candidates = []
    for info in infos:
        path = info.get('path', b'')
        if isinstance(path, bytes):
            path = path.decode('utf-8', errors='replace')
        candidates.append(Candidate(
            path=path,
            vid=vid,
            pid=pid,
            serial_number=info.get('serial_number') or "",
            product=info.get('product_string') or "",
            manufacturer=info.get('manufacturer_string') or "",
            backend=BACKEND_HIDAPI,
        ))
    return candidates


def _usb_string(dev: Any, index: int) -> str:
    """Read a USB string descriptor; unreadable strings come back empty."""
    if not index:
        return ""
    try:
        return usb.util.get_string(dev, index) or ""
    except (usb.core.USBError, ValueError) as e:
        # libusb raises ValueError when the langid table is unreadable
        # (typically missing permissions)
        log.debug("String descriptor %d unreadable: %s", index, e)
        return ""


def _find_pyusb(vid: int, pid: int) -> List[Candidate]:
    try:
        found = usb.core.find(find_all=True, idVendor=vid, idProduct=pid)
        devices = list(found or [])
    except (usb.core.NoBackendError, usb.core.USBError) as e:
        raise TransportError(f"USB enumeration failed: {e}") from e

    candidates = []
    for dev in devices:
        serial = _usb_string(dev, getattr(dev, 'iSerialNumber', 0))
        if not serial:
            log.debug("No serial number for %s-%s (%s)", dev.bus, dev.address, PERMISSION_HINT)
        candidates.append(Candidate(
            path=f"{dev.bus}-{dev.address}",
            vid=vid,
            pid=pid,
            serial_number=serial,
            product=_usb_string(dev, getattr(dev, 'iProduct', 0)),
            manufacturer=_usb_string(dev, getattr(dev, 'iManufacturer', 0)),
            backend=BACKEND_PYUSB,
        ))
    return candidates


def find_candidates(
    vid: int = LOOKING_GLASS_VID,
    pid: int = LOOKING_GLASS_PID,
    backend: str = BACKEND_AUTO,
) -> List[Candidate]:
    """List devices matching *vid*/*pid* on the chosen backend.

    Raises:
        TransportError: If the backend cannot enumerate at all.
    """
    backend = resolve_backend(backend)
    log.debug("Scanning for %04x:%04x via %s", vid, pid, backend)
    if backend == BACKEND_HIDAPI:
        candidates = _find_hidapi(vid, pid)
    else:
        candidates = _find_pyusb(vid, pid)
    log.debug("Found %d candidate(s)", len(candidates))
    return candidates


def open_transport(candidate: Candidate) -> HidTransport:
    """Create and open the transport matching ``candidate.backend``.

    Raises:
        TransportError: If the device cannot be opened.
    """
    if candidate.backend == BACKEND_HIDAPI:
        transport: HidTransport = HidApiTransport(candidate)
    elif candidate.backend == BACKEND_PYUSB:
        transport = PyUsbTransport(candidate)
    else:
        raise TransportError(f"unknown HID backend: {candidate.backend!r}")
    transport.open()
    return transport
