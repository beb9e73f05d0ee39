"""Bootstrap configuration helpers (pre-settings).

Logging has to be configured before the settings singleton exists, so the few
values it needs are read straight from the environment here.

Keep this module free of telemetry imports.
"""

from __future__ import annotations

import os
from pathlib import Path

from storefront_assistant.config.validators import validate_log_format, validate_log_level


def get_bootstrap_log_level(default: str = "INFO") -> str:
    """Get logging level from environment without importing settings.

    Args:
        default: Default log level if not set or invalid.

    Returns:
        Uppercased, validated log level string.
    """
    value = os.getenv("ASSISTANT_LOG_LEVEL", default)
    try:
        return validate_log_level(value)
    except ValueError:
        return validate_log_level(default)


def get_bootstrap_log_format(default: str = "console") -> str:
    """Get console renderer choice ('json' or 'console') from environment."""
    value = os.getenv("ASSISTANT_LOG_FORMAT", default)
    try:
        return validate_log_format(value)
    except ValueError:
        return validate_log_format(default)


def get_bootstrap_log_dir() -> Path | None:
    """Get the optional JSON-lines log directory.

    Returns:
        Directory path, or None when file logging is disabled.
    """
    value = os.getenv("ASSISTANT_LOG_DIR", "").strip()
    return Path(value) if value else None
