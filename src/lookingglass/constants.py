"""Shared constants for Looking Glass Linux.

USB IDs, EEPROM page geometry and the calibration schema version,
all taken from the display firmware's HID feature-report protocol.
"""

# =========================================================================
# USB IDs (Microchip VID; every Looking Glass revision reports the same pair)
# =========================================================================

LOOKING_GLASS_VID = 0x04D8
LOOKING_GLASS_PID = 0xEF7E

# =========================================================================
# EEPROM paging
# =========================================================================

# EEPROM is addressed in 64-byte pages; page 0 starts with the document length
PAGE_SIZE = 64

# Request frame: [report id, reserved, addr_hi, addr_lo] + 64 zero bytes.
# The firmware rejects anything that is not exactly 68 bytes.
REQUEST_HEADER_SIZE = 4
REQUEST_SIZE = REQUEST_HEADER_SIZE + PAGE_SIZE

# Every page response repeats the request header: [0, 0, addr_hi, addr_lo]
ECHO_HEADER_SIZE = 4

# Page 0 payload: big-endian uint32 document length, then document bytes
LENGTH_PREFIX_SIZE = 4

# Highest address the 16-bit wire field can carry
MAX_PAGE_ADDRESS = 0xFFFF

# =========================================================================
# Read timing
# =========================================================================

# Per-read timeout (ms).  A read that times out means "no data ready".
READ_TIMEOUT_MS = 10

# Buffer size per input-report read.  hidraw delivers 68-byte reports,
# libusb splits them into 64-byte chunks; 128 covers both.
READ_CHUNK_SIZE = 128

# =========================================================================
# Calibration document
# =========================================================================

SUPPORTED_CONFIG_VERSION = "1.0"

# Numeric fields, each stored as {"value": <number>}
CALIBRATION_VALUE_FIELDS = (
    "pitch",
    "slope",
    "center",
    "viewCone",
    "invView",
    "verticalAngle",
    "DPI",
    "screenW",
    "screenH",
    "flipImageX",
    "flipImageY",
    "flipSubp",
)
