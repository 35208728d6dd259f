"""
Utility functions for fusebox.
"""

from .clock import Clock, SystemClock, ManualClock, default_clock
from .config import (
    get_config_value,
    parse_duration_ms,
    normalize_config_key,
    validate_config,
    load_config_file,
)

__all__ = [
    # Clocks
    "Clock",
    "SystemClock",
    "ManualClock",
    "default_clock",

    # Configuration
    "get_config_value",
    "parse_duration_ms",
    "normalize_config_key",
    "validate_config",
    "load_config_file",
]
