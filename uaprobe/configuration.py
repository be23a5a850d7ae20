# uaprobe/configuration.py

"""
Configuration loader for UA Probe.

Handles loading settings from config.yaml. If the file doesn't exist,
it creates one with default values.
"""

import logging
import yaml
from typing import Dict, Any, Optional

from .errors import ConfigError
from .models import (
    DEFAULT_PORT,
    DEFAULT_NODE_ID,
    DEFAULT_PUBLISHING_INTERVAL_MS,
    DEFAULT_MONITOR_DURATION_MS,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_SETTLE_MS,
)

# This dictionary holds the default structure and values for our config.
# It will be used to generate the initial config.yaml.
DEFAULT_CONFIG: Dict[str, Any] = {
    'port': DEFAULT_PORT,
    'node_id': DEFAULT_NODE_ID,
    'publishing_interval_ms': DEFAULT_PUBLISHING_INTERVAL_MS,
    'monitor_duration_ms': DEFAULT_MONITOR_DURATION_MS,
    'poll_interval_ms': DEFAULT_POLL_INTERVAL_MS,
    'subscription_settle_ms': DEFAULT_SETTLE_MS,
    'connect_timeout_seconds': 5,
    # Options: auto, netstat, psutil
    'socket_table_source': 'auto',
    'netstat_timeout_seconds': 10,
    'log_directory': 'logs',
}

CONFIG_HEADER = (
    "# UA Probe Configuration File\n"
    "# You can edit these settings. The probe will use them on its next run.\n\n"
)


def get_config_path() -> str:
    """Returns the path to the config file."""
    return "config.yaml"


def save_config(config: Dict[str, Any], config_path: Optional[str] = None):
    """Saves the provided configuration dictionary to config.yaml."""
    config_path = config_path or get_config_path()
    try:
        with open(config_path, 'w') as f:
            f.write(CONFIG_HEADER)
            yaml.dump(config, f, sort_keys=False, default_flow_style=False, indent=2)
    except IOError as e:
        logging.error(f"Could not write config file to '{config_path}': {e}")


def load_or_create_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Loads configuration from config.yaml.

    If the file doesn't exist, it creates it with default values.
    If the file is invalid, a ConfigError is raised.
    """
    config_path = config_path or get_config_path()
    try:
        with open(config_path, 'r') as f:
            user_config = yaml.safe_load(f)

        # Merge user config with defaults to ensure all keys are present
        config = DEFAULT_CONFIG.copy()
        if user_config:
            if not isinstance(user_config, dict):
                raise ConfigError(f"'{config_path}' must contain a mapping of settings.")
            config.update(user_config)
        return config

    except FileNotFoundError:
        logging.info(f"Configuration file not found. Creating '{config_path}' with default settings.")
        save_config(DEFAULT_CONFIG, config_path)
        return DEFAULT_CONFIG.copy()

    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing '{config_path}': {e}")


SOCKET_TABLE_SOURCES = ('auto', 'netstat', 'psutil')


def validate_settings(config: Dict[str, Any]):
    """
    Checks the application-level settings a probe run depends on.
    Raises ConfigError naming the first bad value.
    """
    source = str(config.get('socket_table_source') or 'auto').lower()
    if source not in SOCKET_TABLE_SOURCES:
        raise ConfigError(
            f"Unknown socket_table_source '{config.get('socket_table_source')}'. "
            f"Use {', '.join(SOCKET_TABLE_SOURCES)}."
        )

    for key in ('connect_timeout_seconds', 'netstat_timeout_seconds'):
        value = config.get(key)
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{key} must be a number of seconds, got {value!r}")
        if seconds <= 0:
            raise ConfigError(f"{key} must be positive, got {value!r}")

    if not str(config.get('log_directory') or '').strip():
        raise ConfigError("log_directory must not be empty")
