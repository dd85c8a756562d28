"""Fake Looking Glass display for protocol tests, no real HID hardware needed."""
import struct
from collections import deque
from typing import List, Optional

import pytest

from lookingglass.constants import PAGE_SIZE
from lookingglass.hid_transport import Candidate, HidTransport

# Uninitialised EEPROM reads back as 0xFF
ERASED = 0xFF


class FakeDisplay(HidTransport):
    """Serves an EEPROM image through the page request/response protocol.

    Each response (echo header + 64-byte page) is split into reads of
    *chunk_size* bytes, like libusb splitting 68-byte reports.
    """

    def __init__(
        self,
        document: bytes = b'',
        chunk_size: int = 64,
        declared_length: Optional[int] = None,
        stale: Optional[List[bytes]] = None,
        candidate: Optional[Candidate] = None,
    ):
        super().__init__(candidate or Candidate(path="/dev/hidraw-fake"))
        length = len(document) if declared_length is None else declared_length
        self.memory = struct.pack('>I', length) + document
        self.chunk_size = chunk_size
        self.pending = deque(stale or [])
        self.requests: List[bytes] = []
        self.blocking: Optional[bool] = None
        self._is_open = False
        self.closed = False
        self.open_count = 0
        self.close_count = 0

    def open(self) -> None:
        self.open_count += 1
        self._is_open = True

    def close(self) -> None:
        self.close_count += 1
        self._is_open = False
        self.closed = True

    def set_blocking(self, blocking: bool) -> None:
        self.blocking = blocking

    def page(self, address: int) -> bytes:
        start = address * PAGE_SIZE
        data = self.memory[start:start + PAGE_SIZE]
        return data + bytes([ERASED]) * (PAGE_SIZE - len(data))

    def write_report(self, data: bytes) -> int:
        self.requests.append(bytes(data))
        (address,) = struct.unpack('>H', data[2:4])
        response = bytes(data[:4]) + self.page(address)
        for i in range(0, len(response), self.chunk_size):
            self.pending.append(response[i:i + self.chunk_size])
        return len(data)

    def read_chunk(self, timeout_ms: int = 10) -> Optional[bytes]:
        if self.pending:
            return self.pending.popleft()
        return None

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def addresses(self) -> List[int]:
        return [struct.unpack('>H', r[2:4])[0] for r in self.requests]


VALID_DOCUMENT = (
    '{"configVersion":"1.0","serial":"00297",'
    '"pitch":{"value":49.81804275512695},'
    '"slope":{"value":5.044347763061523},'
    '"center":{"value":0.176902174949646},'
    '"viewCone":{"value":40.0},"invView":{"value":1.0},'
    '"verticalAngle":{"value":0.0},"DPI":{"value":338.0},'
    '"screenW":{"value":2560.0},"screenH":{"value":1600.0},'
    '"flipImageX":{"value":0.0},"flipImageY":{"value":0.0},'
    '"flipSubp":{"value":0.0}}'
)


@pytest.fixture
def valid_document() -> str:
    return VALID_DOCUMENT


@pytest.fixture
def fake_display():
    """Factory fixture: fake_display(document_bytes, **kw) -> FakeDisplay."""
    def _make(document: bytes = VALID_DOCUMENT.encode(), **kw) -> FakeDisplay:
        display = FakeDisplay(document, **kw)
        display.open()
        return display
    return _make
