"""Configuration loading for Home Assistant add-ons.

Options come from /data/options.json (HA Supervisor pattern) and fall
back to environment variables for local development.

Usage:
    from shared.config_loader import load_addon_config

    config = load_addon_config(
        required_fields=['battery_host', 'battery_api_token'],
        defaults={'start_time': '00:00', 'capacity_threshold': 20}
    )
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

TRUE_STRINGS = ('1', 'true', 'yes', 'on')


class ConfigError(Exception):
    """Raised when the add-on configuration is missing or malformed."""


def load_addon_config(
    config_path: str = '/data/options.json',
    defaults: Optional[Dict[str, Any]] = None,
    required_fields: Optional[List[str]] = None,
    env_prefix: str = ''
) -> Dict[str, Any]:
    """Load add-on configuration from JSON file or environment.

    Priority order:
    1. JSON config file (if exists)
    2. Environment variables (as fallback)
    3. Default values

    Args:
        config_path: Path to JSON config file
        defaults: Default values for optional fields
        required_fields: List of required field names
        env_prefix: Prefix for environment variables (e.g. 'BD_' for BD_BATTERY_HOST)

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If the file is not valid JSON, a required field is missing
            or an environment value does not match the type of its default
    """
    defaults = defaults or {}
    required_fields = required_fields or []
    config: Dict[str, Any] = {}

    if os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e
        logger.info("Loaded configuration from %s", config_path)
    else:
        logger.warning("Config file %s not found, using environment/defaults", config_path)

    for field in required_fields:
        if config.get(field) in (None, ''):
            env_key = f"{env_prefix}{field}".upper()
            env_value = os.getenv(env_key)
            if env_value:
                config[field] = env_value
                logger.debug("Loaded %s from environment variable %s", field, env_key)
            elif field not in defaults:
                raise ConfigError(f"Required config field missing: {field} (env: {env_key})")

    for key, value in defaults.items():
        if config.get(key) is None:
            env_key = f"{env_prefix}{key}".upper()
            env_value = os.getenv(env_key)
            if env_value is not None:
                config[key] = _cast_env_value(env_key, env_value, type(value))
            else:
                config[key] = value

    return config


def _cast_env_value(env_key: str, value: str, target_type: type) -> Any:
    """Cast an environment string to the type of the matching default."""
    if target_type == bool:
        return value.lower() in TRUE_STRINGS
    try:
        if target_type == int:
            return int(value)
        if target_type == float:
            return float(value)
    except ValueError as e:
        raise ConfigError(f"Invalid value for {env_key}: {value!r}") from e
    return value


def to_bool(value: Any) -> bool:
    """Interpret option values like "yes", "1" or True as booleans."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def get_run_once_mode() -> bool:
    """Check if add-on should run once and exit (RUN_ONCE=1 in environment)."""
    return os.getenv('RUN_ONCE', '').lower() in TRUE_STRINGS
