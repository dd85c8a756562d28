#!/usr/bin/env python3
"""
EEPROM paging protocol for Looking Glass displays.

The calibration document lives in the display's EEPROM, organised in
64-byte pages.  Each page is fetched with one request/response
transaction:

    request  (feature report, 68 bytes)::

        [0x00, 0x00, addr_hi, addr_lo] + 64 zero bytes

    response (input reports, read until the channel is empty)::

        [0x00, 0x00, addr_hi, addr_lo] + page payload

Page 0 payload starts with the document length as a big-endian uint32,
followed by the first slice of the document.  Later pages are appended
whole until the declared length is reached; bytes past it are
uninitialised EEPROM and are dropped.

One outstanding transaction per device: the echo check relies on no
other request being interleaved.
"""

from __future__ import annotations

import logging
import struct
from typing import Optional

from .constants import (
    ECHO_HEADER_SIZE,
    LENGTH_PREFIX_SIZE,
    MAX_PAGE_ADDRESS,
    PAGE_SIZE,
    READ_TIMEOUT_MS,
    REQUEST_SIZE,
)
from .errors import (
    ConfirmationMismatchError,
    EncodingError,
    TransportError,
    WriteMismatchError,
)
from .hid_transport import HidTransport

log = logging.getLogger(__name__)


class EepromReader:
    """Reads the calibration document from one open display.

    The transport must already be open; the reader never closes it.
    """

    def __init__(self, transport: HidTransport, timeout_ms: int = READ_TIMEOUT_MS):
        self.transport = transport
        self.timeout_ms = timeout_ms

    # -- Request framing ------------------------------------------------

    @staticmethod
    def echo_header(address: int) -> bytes:
        """The 4 bytes every request starts with and every response repeats."""
        if not 0 <= address <= MAX_PAGE_ADDRESS:
            raise TransportError(
                f"page address {address} does not fit the 16-bit address field"
            )
        return struct.pack('>HH', 0, address)

    @classmethod
    def build_page_request(cls, address: int) -> bytes:
        """Build the 68-byte page request for *address*."""
        header = cls.echo_header(address)
        return header + b'\x00' * (REQUEST_SIZE - len(header))

    # -- Channel I/O ----------------------------------------------------

    def _read_until_empty(self) -> bytes:
        """Concatenate reads until one reports "no data ready".

        A page may arrive split over several reads (libusb delivers
        64-byte chunks of a 68-byte report).
        """
        buf = bytearray()
        while True:
            chunk: Optional[bytes] = self.transport.read_chunk(self.timeout_ms)
            if chunk is None:
                return bytes(buf)
            buf.extend(chunk)

    def drain(self) -> int:
        """Discard stale bytes left on the response channel.

        Returns the number of bytes discarded.
        """
        stale = self._read_until_empty()
        if stale:
            log.debug("Drained %d stale byte(s): %s", len(stale), stale[:16].hex())
        return len(stale)

    # -- Page transaction -----------------------------------------------

    def read_page(self, address: int) -> bytes:
        """Fetch one page and return its payload (echo header removed).

        Raises:
            TransportError: Read/write failure or address out of range.
            WriteMismatchError: The request report was partially written.
            ConfirmationMismatchError: The response does not echo *address*.
        """
        request = self.build_page_request(address)
        self.drain()

        written = self.transport.write_report(request)
        if written != len(request):
            raise WriteMismatchError(len(request), written)

        response = self._read_until_empty()
        expected = request[:ECHO_HEADER_SIZE]

        if len(response) <= ECHO_HEADER_SIZE or response[:ECHO_HEADER_SIZE] != expected:
            log.warning(
                "Confirm failed for page %d: expected %s, got %s (len=%d)",
                address, expected.hex(),
                response[:ECHO_HEADER_SIZE].hex() if response else "empty",
                len(response),
            )
            raise ConfirmationMismatchError(address, response)

        payload = response[ECHO_HEADER_SIZE:]
        log.debug("Page %d: %d payload byte(s)", address, len(payload))
        return payload

    # -- Stream assembly ------------------------------------------------

    def read_config_bytes(self) -> bytes:
        """Reassemble the length-prefixed document.

        Raises:
            TransportError: Any page transaction failed.
            ConfirmationMismatchError: Page 0 is too short for the length prefix.
        """
        first = self.read_page(0)
        if len(first) < LENGTH_PREFIX_SIZE:
            raise ConfirmationMismatchError(
                0, first,
                f"page 0 payload has {len(first)} byte(s), "
                f"need {LENGTH_PREFIX_SIZE} for the length prefix",
            )

        (declared,) = struct.unpack('>I', first[:LENGTH_PREFIX_SIZE])
        log.debug("Declared document length: %d", declared)

        data = bytearray(first[LENGTH_PREFIX_SIZE:])
        while len(data) < declared:
            data.extend(self.read_page(len(data) // PAGE_SIZE + 1))

        # Lop off uninitialised EEPROM past the declared length
        del data[declared:]
        return bytes(data)

    def read_config_string(self) -> str:
        """Reassemble the document and decode it as UTF-8.

        Raises:
            EncodingError: The document bytes are not valid UTF-8.
        """
        raw = self.read_config_bytes()
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise EncodingError(f"configuration is not valid UTF-8: {e}") from e
