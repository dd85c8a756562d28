"""Mock tests for the HID transports and device discovery.

No real USB hardware required: hidapi and pyusb are patched.
"""

from unittest.mock import MagicMock, patch

import pytest
import usb.core

from lookingglass.constants import LOOKING_GLASS_PID, LOOKING_GLASS_VID, READ_CHUNK_SIZE
from lookingglass.device_detector import read_candidate
from lookingglass.errors import ErrorKind, TransportError
from lookingglass.hid_transport import (
    BACKEND_HIDAPI,
    BACKEND_PYUSB,
    HID_REQ_SET_REPORT,
    HID_REQ_TYPE_OUT,
    Candidate,
    HidApiTransport,
    PyUsbTransport,
    find_candidates,
    open_transport,
    resolve_backend,
)

HIDRAW = Candidate(path="/dev/hidraw3", serial_number="LKG-2K-00297", backend=BACKEND_HIDAPI)
LIBUSB = Candidate(path="1-7", backend=BACKEND_PYUSB)


# =========================================================================
# Helpers
# =========================================================================

@pytest.fixture
def mock_hidapi():
    """Patch the hidapi module used by hid_transport."""
    module = MagicMock()
    with patch('lookingglass.hid_transport.hidapi', module, create=True), \
         patch('lookingglass.hid_transport.HIDAPI_AVAILABLE', True):
        yield module


def _make_usb_device(bus=1, address=7, ep_in=0x81) -> MagicMock:
    dev = MagicMock()
    dev.bus = bus
    dev.address = address
    dev.is_kernel_driver_active.return_value = True
    ep = MagicMock()
    ep.bEndpointAddress = ep_in
    cfg = MagicMock()
    cfg.__getitem__.return_value = [ep]
    dev.get_active_configuration.return_value = cfg
    return dev


@pytest.fixture
def usb_device():
    dev = _make_usb_device()
    with patch('usb.core.find', return_value=[dev]), \
         patch('usb.util.claim_interface'), \
         patch('usb.util.release_interface'), \
         patch('usb.util.dispose_resources'):
        yield dev


# =========================================================================
# Candidate
# =========================================================================

class TestCandidate:

    def test_defaults(self):
        c = Candidate(path="/dev/hidraw0")
        assert c.vid == LOOKING_GLASS_VID
        assert c.pid == LOOKING_GLASS_PID
        assert c.backend == BACKEND_HIDAPI
        assert c.vid_pid == "04d8:ef7e"

    def test_hashable(self):
        assert {HIDRAW: 1}[Candidate(path="/dev/hidraw3", serial_number="LKG-2K-00297")] == 1


# =========================================================================
# HidApiTransport
# =========================================================================

class TestHidApiTransport:

    def test_open_by_path(self, mock_hidapi):
        t = HidApiTransport(HIDRAW)
        t.open()
        mock_hidapi.device.return_value.open_path.assert_called_once_with(b"/dev/hidraw3")
        assert t.is_open

    def test_open_permission_error(self, mock_hidapi):
        mock_hidapi.device.return_value.open_path.side_effect = OSError("open failed")
        t = HidApiTransport(HIDRAW)
        with pytest.raises(TransportError, match="permissions"):
            t.open()
        assert not t.is_open

    def test_not_installed(self):
        with patch('lookingglass.hid_transport.HIDAPI_AVAILABLE', False):
            with pytest.raises(TransportError, match="pip install hidapi"):
                HidApiTransport(HIDRAW)

    def test_not_installed_becomes_candidate_outcome(self):
        with patch('lookingglass.hid_transport.HIDAPI_AVAILABLE', False):
            outcome = read_candidate(HIDRAW)
        assert outcome.kind is ErrorKind.TRANSPORT
        assert "hidapi is not installed" in outcome.message

    def test_set_blocking(self, mock_hidapi):
        dev = mock_hidapi.device.return_value
        dev.set_nonblocking.return_value = 0
        with HidApiTransport(HIDRAW) as t:
            t.set_blocking(True)
            dev.set_nonblocking.assert_called_with(0)
            t.set_blocking(False)
            dev.set_nonblocking.assert_called_with(1)

    def test_set_blocking_failure(self, mock_hidapi):
        mock_hidapi.device.return_value.set_nonblocking.return_value = -1
        with HidApiTransport(HIDRAW) as t:
            with pytest.raises(TransportError):
                t.set_blocking(True)

    def test_write_report(self, mock_hidapi):
        dev = mock_hidapi.device.return_value
        dev.send_feature_report.return_value = 68
        with HidApiTransport(HIDRAW) as t:
            assert t.write_report(b'\x00' * 68) == 68
        dev.send_feature_report.assert_called_once_with(b'\x00' * 68)

    def test_write_report_error_code(self, mock_hidapi):
        mock_hidapi.device.return_value.send_feature_report.return_value = -1
        with HidApiTransport(HIDRAW) as t:
            with pytest.raises(TransportError):
                t.write_report(b'\x00' * 68)

    def test_write_report_exception(self, mock_hidapi):
        mock_hidapi.device.return_value.send_feature_report.side_effect = OSError("gone")
        with HidApiTransport(HIDRAW) as t:
            with pytest.raises(TransportError, match="gone"):
                t.write_report(b'\x00' * 68)

    def test_read_chunk(self, mock_hidapi):
        dev = mock_hidapi.device.return_value
        dev.read.return_value = [0, 0, 0, 1, 0x7B]
        with HidApiTransport(HIDRAW) as t:
            assert t.read_chunk(10) == b'\x00\x00\x00\x01{'
        dev.read.assert_called_once_with(READ_CHUNK_SIZE, 10)

    def test_read_timeout_is_none(self, mock_hidapi):
        mock_hidapi.device.return_value.read.return_value = []
        with HidApiTransport(HIDRAW) as t:
            assert t.read_chunk(10) is None

    def test_read_error(self, mock_hidapi):
        mock_hidapi.device.return_value.read.side_effect = OSError("read error")
        with HidApiTransport(HIDRAW) as t:
            with pytest.raises(TransportError):
                t.read_chunk(10)

    def test_closed_transport_rejects_io(self, mock_hidapi):
        t = HidApiTransport(HIDRAW)
        with pytest.raises(TransportError, match="not open"):
            t.read_chunk(10)

    def test_context_manager_closes(self, mock_hidapi):
        dev = mock_hidapi.device.return_value
        with HidApiTransport(HIDRAW) as t:
            pass
        dev.close.assert_called_once()
        assert not t.is_open


# =========================================================================
# PyUsbTransport
# =========================================================================

class TestPyUsbTransport:

    def test_open_detaches_and_claims(self, usb_device):
        with PyUsbTransport(LIBUSB) as t:
            assert t.is_open
            usb_device.detach_kernel_driver.assert_called_once_with(0)

    def test_open_wrong_address(self, usb_device):
        with pytest.raises(TransportError, match="not found"):
            PyUsbTransport(Candidate(path="2-9", backend=BACKEND_PYUSB)).open()

    def test_claim_failure(self, usb_device):
        with patch('usb.util.claim_interface', side_effect=usb.core.USBError("Access denied")):
            with pytest.raises(TransportError, match="permissions"):
                PyUsbTransport(LIBUSB).open()

    def test_claim_failure_reattaches_kernel_driver(self, usb_device):
        with patch('usb.util.claim_interface', side_effect=usb.core.USBError("Resource busy")), \
             patch('usb.util.dispose_resources') as dispose:
            with pytest.raises(TransportError):
                PyUsbTransport(LIBUSB).open()
        usb_device.detach_kernel_driver.assert_called_once_with(0)
        usb_device.attach_kernel_driver.assert_called_once_with(0)
        dispose.assert_called_once_with(usb_device)

    def test_claim_failure_without_detach_leaves_driver(self, usb_device):
        usb_device.is_kernel_driver_active.return_value = False
        with patch('usb.util.claim_interface', side_effect=usb.core.USBError("Access denied")):
            with pytest.raises(TransportError):
                PyUsbTransport(LIBUSB).open()
        usb_device.attach_kernel_driver.assert_not_called()

    def test_no_in_endpoint(self, usb_device):
        usb_device.get_active_configuration.return_value.__getitem__.return_value = []
        t = PyUsbTransport(LIBUSB)
        with pytest.raises(TransportError, match="IN endpoint"):
            t.open()
        assert not t.is_open

    def test_write_report_set_report(self, usb_device):
        usb_device.ctrl_transfer.return_value = 67
        frame = b'\x00\x00\x00\x05' + b'\x00' * 64
        with PyUsbTransport(LIBUSB) as t:
            assert t.write_report(frame) == 68
        args = usb_device.ctrl_transfer.call_args[0]
        assert args[0] == HID_REQ_TYPE_OUT
        assert args[1] == HID_REQ_SET_REPORT
        assert args[2] == 0x0300
        assert args[3] == 0
        assert args[4] == frame[1:]

    def test_write_report_error(self, usb_device):
        usb_device.ctrl_transfer.side_effect = usb.core.USBError("Pipe error")
        with PyUsbTransport(LIBUSB) as t:
            with pytest.raises(TransportError, match="SET_REPORT"):
                t.write_report(b'\x00' * 68)

    def test_read_chunk(self, usb_device):
        usb_device.read.return_value = bytearray(b'\x00\x00\x00\x00abc')
        with PyUsbTransport(LIBUSB) as t:
            assert t.read_chunk(10) == b'\x00\x00\x00\x00abc'
        usb_device.read.assert_called_once_with(0x81, READ_CHUNK_SIZE, timeout=10)

    def test_read_timeout_is_none(self, usb_device):
        usb_device.read.side_effect = usb.core.USBTimeoutError("Operation timed out")
        with PyUsbTransport(LIBUSB) as t:
            assert t.read_chunk(10) is None

    def test_read_zero_length_is_empty_bytes(self, usb_device):
        usb_device.read.return_value = bytearray()
        with PyUsbTransport(LIBUSB) as t:
            assert t.read_chunk(10) == b''

    def test_read_error(self, usb_device):
        usb_device.read.side_effect = usb.core.USBError("No such device")
        with PyUsbTransport(LIBUSB) as t:
            with pytest.raises(TransportError):
                t.read_chunk(10)


# =========================================================================
# Backend selection + discovery
# =========================================================================

class TestResolveBackend:

    def test_auto_prefers_hidapi(self):
        with patch('lookingglass.hid_transport.HIDAPI_AVAILABLE', True):
            assert resolve_backend("auto") == BACKEND_HIDAPI

    def test_auto_falls_back_to_pyusb(self):
        with patch('lookingglass.hid_transport.HIDAPI_AVAILABLE', False):
            assert resolve_backend("auto") == BACKEND_PYUSB

    def test_hidapi_missing(self):
        with patch('lookingglass.hid_transport.HIDAPI_AVAILABLE', False):
            with pytest.raises(TransportError, match="not installed"):
                resolve_backend("hidapi")

    def test_unknown(self):
        with pytest.raises(TransportError, match="unknown"):
            resolve_backend("serial")


class TestFindCandidates:

    def test_hidapi(self, mock_hidapi):
        mock_hidapi.enumerate.return_value = [{
            'path': b'/dev/hidraw3',
            'serial_number': 'LKG-2K-00297',
            'product_string': 'HoloPlay',
            'manufacturer_string': 'Looking Glass Factory',
        }]
        found = find_candidates(backend="hidapi")
        mock_hidapi.enumerate.assert_called_once_with(LOOKING_GLASS_VID, LOOKING_GLASS_PID)
        assert found == [Candidate(
            path="/dev/hidraw3",
            serial_number="LKG-2K-00297",
            product="HoloPlay",
            manufacturer="Looking Glass Factory",
            backend=BACKEND_HIDAPI,
        )]

    def test_hidapi_missing_serial(self, mock_hidapi):
        mock_hidapi.enumerate.return_value = [{'path': b'/dev/hidraw0', 'serial_number': None}]
        assert find_candidates(backend="hidapi")[0].serial_number == ""

    def test_hidapi_none_found(self, mock_hidapi):
        mock_hidapi.enumerate.return_value = []
        assert find_candidates(backend="hidapi") == []

    def test_hidapi_enumeration_failure(self, mock_hidapi):
        mock_hidapi.enumerate.side_effect = OSError("hid_init failed")
        with pytest.raises(TransportError, match="enumeration"):
            find_candidates(backend="hidapi")

    def test_pyusb(self):
        dev = _make_usb_device(bus=3, address=12)
        dev.iSerialNumber = 3
        dev.iProduct = 2
        dev.iManufacturer = 1
        strings = {1: "Looking Glass Factory", 2: "HoloPlay", 3: "LKG-2K-00297"}
        with patch('usb.core.find', return_value=[dev]) as find, \
             patch('usb.util.get_string', side_effect=lambda d, i: strings[i]):
            found = find_candidates(backend="pyusb")
        find.assert_called_once_with(
            find_all=True, idVendor=LOOKING_GLASS_VID, idProduct=LOOKING_GLASS_PID,
        )
        assert found == [Candidate(
            path="3-12",
            serial_number="LKG-2K-00297",
            product="HoloPlay",
            manufacturer="Looking Glass Factory",
            backend=BACKEND_PYUSB,
        )]

    def test_pyusb_unreadable_serial(self):
        dev = _make_usb_device()
        dev.iSerialNumber = 3
        dev.iProduct = 0
        dev.iManufacturer = 0
        with patch('usb.core.find', return_value=[dev]), \
             patch('usb.util.get_string', side_effect=ValueError("The device has no langid")):
            found = find_candidates(backend="pyusb")
        assert found[0].serial_number == ""

    def test_pyusb_no_backend(self):
        with patch('usb.core.find', side_effect=usb.core.NoBackendError("No backend available")):
            with pytest.raises(TransportError):
                find_candidates(backend="pyusb")


class TestOpenTransport:

    def test_hidapi(self, mock_hidapi):
        t = open_transport(HIDRAW)
        assert isinstance(t, HidApiTransport)
        assert t.is_open

    def test_pyusb(self, usb_device):
        t = open_transport(LIBUSB)
        assert isinstance(t, PyUsbTransport)
        assert t.is_open
        t.close()

    def test_unknown_backend(self):
        with pytest.raises(TransportError):
            open_transport(Candidate(path="x", backend="bluetooth"))
