"""
Configuration utilities for fusebox.
Provides configuration loading, validation, and management functions.
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, List

import yaml


DEFAULT_ENV_PREFIX = "FUSEBOX_"

_DURATION_UNITS_MS = {
    'ms': 1.0,
    's': 1000.0,
    'm': 60 * 1000.0,
    'h': 60 * 60 * 1000.0,
}


def get_config_value(key: str, default: Any = None,
                     cast_type: Optional[type] = None,
                     env_prefix: str = DEFAULT_ENV_PREFIX) -> Any:
    """
    Get configuration value from environment or return default.
    Optionally cast to specified type.
    """
    env_key = f"{env_prefix}{key.upper()}"
    value = os.environ.get(env_key, default)

    if value is None or cast_type is None:
        return value

    try:
        if cast_type == bool:
            if isinstance(value, str):
                return value.lower() in ('true', '1', 'yes', 'on')
            return bool(value)
        elif cast_type == list:
            # Comma-separated
            if isinstance(value, str):
                return [item.strip() for item in value.split(',') if item.strip()]
            return list(value) if value else []
        else:
            return cast_type(value)
    except (ValueError, TypeError):
        return default


def parse_duration_ms(duration: Any) -> int:
    """
    Parse a duration into whole milliseconds.

    Accepts plain numbers (already milliseconds) and strings like
    '250ms', '30s', '5m', '2h'. A bare numeric string is milliseconds.
    """
    if isinstance(duration, bool):
        raise ValueError(f"Invalid duration: {duration!r}")
    if isinstance(duration, (int, float)):
        return int(duration)
    if not isinstance(duration, str):
        raise ValueError(f"Invalid duration: {duration!r}")

    duration_str = duration.strip().lower()

    pattern = r'^(\d+(?:\.\d+)?)\s*(ms|s|m|h)?$'
    match = re.match(pattern, duration_str)

    if not match:
        raise ValueError(f"Invalid duration format: {duration}")

    value, unit = match.groups()
    return int(float(value) * _DURATION_UNITS_MS[unit or 'ms'])


def normalize_config_key(key: str) -> str:
    """Normalize configuration key to snake_case."""
    key = re.sub(r'(?<=[a-z0-9])([A-Z])', r'_\1', key)
    return key.lower().replace('-', '_')


def normalize_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize every top-level key of a configuration mapping."""
    return {normalize_config_key(k): v for k, v in config.items()}


def validate_config(config: Dict[str, Any],
                    schema: Dict[str, Dict[str, Any]]) -> List[str]:
    """
    Validate configuration against a schema.
    Returns list of validation errors.

    Schema format:
    {
        'field_name': {
            'required': True/False,
            'type': type or tuple of types,
            'min': min_value,
            'max': max_value
        }
    }
    """
    errors = []

    for field, rules in schema.items():
        if rules.get('required', False) and field not in config:
            errors.append(f"Missing required field: {field}")
            continue

        if field not in config:
            continue

        value = config[field]

        # Optional fields may be explicitly unset
        if value is None and not rules.get('required', False):
            continue

        expected_type = rules.get('type')
        if expected_type and (isinstance(value, bool) or not isinstance(value, expected_type)):
            type_name = (expected_type.__name__ if isinstance(expected_type, type)
                         else " or ".join(t.__name__ for t in expected_type))
            errors.append(f"Field {field} must be of type {type_name}")
            continue

        if isinstance(value, (int, float)):
            min_val = rules.get('min')
            max_val = rules.get('max')

            if min_val is not None and value < min_val:
                errors.append(f"Field {field} must be >= {min_val}")

            if max_val is not None and value > max_val:
                errors.append(f"Field {field} must be <= {max_val}")

    return errors


def load_config_file(file_path: str) -> Dict[str, Any]:
    """Load configuration from a file (JSON or YAML)."""
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    file_ext = path.suffix.lower()

    with open(path, 'r', encoding='utf-8') as f:
        if file_ext == '.json':
            data = json.load(f)
        elif file_ext in ('.yaml', '.yml'):
            data = yaml.safe_load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {file_ext}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {file_path} must contain a mapping")
    return data
