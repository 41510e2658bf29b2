"""Shared modules for Home Assistant add-ons.

- addon_base: Signal handling, logging setup, background loop utilities
- ha_mqtt_discovery: MQTT Discovery for entities with unique_id
- config_loader: Configuration loading from JSON/environment
"""

from .addon_base import setup_logging, set_log_level, setup_signal_handlers, sleep_with_shutdown_check, run_addon_loop
from .config_loader import ConfigError, load_addon_config, get_run_once_mode, to_bool

__all__ = [
    # addon_base
    'setup_logging',
    'set_log_level',
    'setup_signal_handlers',
    'sleep_with_shutdown_check',
    'run_addon_loop',
    # config_loader
    'ConfigError',
    'load_addon_config',
    'get_run_once_mode',
    'to_bool',
]
