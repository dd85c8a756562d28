"""
Calibration record decoding.

The EEPROM document is JSON.  Version 1.0 looks like::

    {"configVersion": "1.0", "serial": "00297",
     "pitch": {"value": 49.818}, "slope": {"value": 5.044},
     "center": {"value": 0.1769}, ..., "DPI": {"value": 338.0},
     "screenW": {"value": 2560.0}, "screenH": {"value": 1600.0}, ...}

Every numeric field is wrapped in an object with a single ``value``.
All twelve are validated, only the ones a renderer needs are kept.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict

from .constants import CALIBRATION_VALUE_FIELDS, SUPPORTED_CONFIG_VERSION
from .errors import SchemaParseError, UnsupportedVersionError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Calibration:
    """Optical and resolution parameters of one display."""
    serial: str
    pitch: float
    slope: float
    center: float
    dpi: float
    screen_w: int
    screen_h: int

    @property
    def resolution(self) -> tuple[int, int]:
        return (self.screen_w, self.screen_h)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _value(doc: Dict[str, Any], name: str) -> float:
    """Extract ``doc[name]["value"]`` as a float."""
    wrapper = doc.get(name)
    if not isinstance(wrapper, dict) or 'value' not in wrapper:
        raise SchemaParseError(f"field {name!r} must be an object with a 'value'")
    value = wrapper['value']
    # bool is an int subclass; true/false is not a calibration value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SchemaParseError(f"{name}.value must be a number, got {type(value).__name__}")
    return float(value)


def _dimension(value: float, name: str) -> int:
    """Narrow a screen dimension to a non-negative int, truncating toward zero."""
    if not math.isfinite(value) or value < 0:
        raise SchemaParseError(f"{name}.value must be a non-negative number, got {value}")
    return int(value)


def parse_calibration(doc: Any) -> Calibration:
    """Project an already-parsed document into a Calibration.

    Raises:
        SchemaParseError: Wrong shape, missing or mistyped field.
        UnsupportedVersionError: configVersion is not "1.0".
    """
    if not isinstance(doc, dict):
        raise SchemaParseError(f"document must be a JSON object, got {type(doc).__name__}")

    version = doc.get('configVersion')
    if not isinstance(version, str):
        raise SchemaParseError("missing or non-string 'configVersion'")
    # TODO: accept later configVersions once a device shipping one is available
    if version != SUPPORTED_CONFIG_VERSION:
        raise UnsupportedVersionError(version, SUPPORTED_CONFIG_VERSION)

    serial = doc.get('serial')
    if not isinstance(serial, str):
        raise SchemaParseError("missing or non-string 'serial'")

    values = {name: _value(doc, name) for name in CALIBRATION_VALUE_FIELDS}

    return Calibration(
        serial=serial,
        pitch=values['pitch'],
        slope=values['slope'],
        center=values['center'],
        dpi=values['DPI'],
        screen_w=_dimension(values['screenW'], 'screenW'),
        screen_h=_dimension(values['screenH'], 'screenH'),
    )


def decode_calibration(text: str) -> Calibration:
    """Parse the EEPROM JSON text into a Calibration.

    Raises:
        SchemaParseError: Not JSON, or not the expected shape.
        UnsupportedVersionError: configVersion is not "1.0".
    """
    try:
        doc = json.loads(text)
    except ValueError as e:
        raise SchemaParseError(f"configuration is not valid JSON: {e}") from e
    except RecursionError as e:
        # Pathologically nested arrays/objects exhaust the decoder's stack
        raise SchemaParseError(f"configuration is nested too deeply: {e}") from e

    calibration = parse_calibration(doc)
    log.debug("Decoded calibration for serial %s", calibration.serial)
    return calibration
