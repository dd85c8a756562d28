"""Settings persistence for Looking Glass Linux.

Config is stored at ~/.config/lookingglass/config.json (XDG-compliant).

Usage:
    from lookingglass.conf import get_backend, get_read_timeout_ms

    get_backend()           # 'auto', 'hidapi' or 'pyusb'
    get_read_timeout_ms()   # per-read HID timeout

    # Low-level config access
    from lookingglass.conf import load_config, save_config
"""
from __future__ import annotations

import json
import logging
import os

from .constants import READ_TIMEOUT_MS
from .hid_transport import BACKEND_AUTO, BACKENDS

log = logging.getLogger(__name__)

# =========================================================================
# Config file location (XDG-compliant)
# =========================================================================

_XDG_CONFIG = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
CONFIG_DIR = os.path.join(_XDG_CONFIG, 'lookingglass')
CONFIG_PATH = os.path.join(CONFIG_DIR, 'config.json')


# =========================================================================
# Low-level config persistence
# =========================================================================

def load_config() -> dict:
    """Load user config from disk. Returns empty dict on missing/corrupt file."""
    try:
        with open(CONFIG_PATH, 'r') as f:
            config = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    if not isinstance(config, dict):
        log.warning("Ignoring %s: top level is not an object", CONFIG_PATH)
        return {}
    return config


def save_config(config: dict):
    """Save user config to disk."""
    os.makedirs(CONFIG_DIR, exist_ok=True)
    with open(CONFIG_PATH, 'w') as f:
        json.dump(config, f, indent=2)


# =========================================================================
# HID backend
# =========================================================================

def get_backend() -> str:
    """Get saved HID backend. Unknown values fall back to 'auto'."""
    backend = load_config().get('backend', BACKEND_AUTO)
    if backend not in BACKENDS:
        log.warning("Unknown backend %r in config, using %r", backend, BACKEND_AUTO)
        return BACKEND_AUTO
    return backend


def save_backend(backend: str):
    """Persist HID backend choice."""
    if backend not in BACKENDS:
        raise ValueError(f"backend must be one of {', '.join(BACKENDS)}")
    config = load_config()
    config['backend'] = backend
    save_config(config)


# =========================================================================
# Read timeout
# =========================================================================

def get_read_timeout_ms() -> int:
    """Get saved per-read timeout in ms, defaulting to READ_TIMEOUT_MS."""
    timeout = load_config().get('read_timeout_ms', READ_TIMEOUT_MS)
    if isinstance(timeout, bool) or not isinstance(timeout, int) or timeout <= 0:
        return READ_TIMEOUT_MS
    return timeout


def save_read_timeout_ms(timeout_ms: int):
    """Persist per-read timeout."""
    if timeout_ms <= 0:
        raise ValueError("timeout must be positive")
    config = load_config()
    config['read_timeout_ms'] = timeout_ms
    save_config(config)
