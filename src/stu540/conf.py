"""Driver settings and config persistence for stu540.

Config is stored at ~/.config/stu540/config.json (XDG-compliant).  Only
driver tuning lives there; nothing about strokes or images is persisted.

Usage:
    from stu540.conf import Settings

    settings = Settings()
    settings.timeout_s      # per request/response timeout (seconds)
    settings.chunk_size     # image upload chunk size (1..255)
    settings.backend        # 'pyusb', 'hidapi' or None (auto)
    settings.vid, settings.pid

    # Low-level config access
    from stu540.conf import load_config, save_config
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional

from .constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_TIMEOUT_S,
    MAX_CHUNK_SIZE,
    STU_PID,
    STU_VID,
)

log = logging.getLogger(__name__)

# =========================================================================
# Config file location (XDG-compliant)
# =========================================================================

_XDG_CONFIG = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
CONFIG_DIR = os.path.join(_XDG_CONFIG, 'stu540')
CONFIG_PATH = os.path.join(CONFIG_DIR, 'config.json')

_BACKENDS = ('pyusb', 'hidapi')


# =========================================================================
# Low-level config persistence
# =========================================================================

def load_config() -> dict:
    """Load user config from disk. Returns empty dict on missing/corrupt file."""
    try:
        with open(CONFIG_PATH, 'r') as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    except (json.JSONDecodeError, OSError) as e:
        log.warning("Ignoring unreadable config %s: %s", CONFIG_PATH, e)
        return {}
    return data if isinstance(data, dict) else {}


def save_config(config: dict):
    """Save user config to disk."""
    os.makedirs(CONFIG_DIR, exist_ok=True)
    with open(CONFIG_PATH, 'w') as f:
        json.dump(config, f, indent=2)


def save_setting(key: str, value: Any):
    """Persist a single setting."""
    config = load_config()
    config[key] = value
    save_config(config)


# =========================================================================
# Settings
# =========================================================================

class Settings:
    """Driver settings read from config.json, with validated fallbacks.

    Bad values are logged and replaced by defaults rather than raised, so a
    hand-edited config never stops the driver from starting.
    """

    def __init__(self, config: Optional[dict] = None) -> None:
        config = load_config() if config is None else config

        self.timeout_s: float = DEFAULT_TIMEOUT_S
        timeout = config.get('timeout_s', DEFAULT_TIMEOUT_S)
        if isinstance(timeout, (int, float)) and not isinstance(timeout, bool) and timeout > 0:
            self.timeout_s = float(timeout)
        else:
            log.warning("Config: invalid timeout_s %r, using %.1f", timeout, DEFAULT_TIMEOUT_S)

        self.chunk_size: int = DEFAULT_CHUNK_SIZE
        chunk = config.get('chunk_size', DEFAULT_CHUNK_SIZE)
        if isinstance(chunk, int) and not isinstance(chunk, bool) and 0 < chunk <= MAX_CHUNK_SIZE:
            self.chunk_size = chunk
        else:
            log.warning("Config: invalid chunk_size %r, using %d", chunk, DEFAULT_CHUNK_SIZE)

        self.backend: Optional[str] = None
        backend = config.get('backend')
        if backend in _BACKENDS:
            self.backend = backend
        elif backend is not None:
            log.warning("Config: unknown backend %r, auto-detecting", backend)

        self.vid: int = _parse_id(config.get('vid'), STU_VID)
        self.pid: int = _parse_id(config.get('pid'), STU_PID)

    def set_timeout(self, seconds: float) -> None:
        """Set and persist the per-call timeout."""
        if seconds <= 0:
            raise ValueError(f"Timeout must be positive, got {seconds}")
        self.timeout_s = float(seconds)
        save_setting('timeout_s', self.timeout_s)

    def set_backend(self, backend: Optional[str]) -> None:
        """Set and persist the preferred backend (None = auto)."""
        if backend is not None and backend not in _BACKENDS:
            raise ValueError(f"Unknown backend {backend!r}")
        self.backend = backend
        save_setting('backend', backend)


def _parse_id(value: Any, default: int) -> int:
    """Accept 1386, '1386' or '0x056a'."""
    if value is None:
        return default
    try:
        return int(value, 0) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        log.warning("Config: invalid USB id %r, using %#06x", value, default)
        return default
