"""Looking Glass Linux version information."""

__version__ = "0.3.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Version history:
# 0.1.0 - Initial release: HID enumeration, EEPROM page reads, raw JSON dump
# 0.2.0 - Typed Calibration record, schema validation, configVersion check
# 0.3.0 - Per-device outcomes (one bad display no longer aborts the scan),
#         pyusb fallback backend, config file, setup-udev command
