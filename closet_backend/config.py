"""
Closet NFC Backend - Configuration

This module contains all the configuration settings for the application.
Defaults are merged with the user's JSON config file, one section at a time.
"""

import copy
import json
import logging
import os

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CONFIG = {
    # Application settings
    "app_name": "Closet NFC",
    "debug_mode": False,

    # Database settings
    "database": {
        "path": "data/closet.db",
    },

    # NFC settings
    "nfc": {
        "i2c_bus": 1,
        "i2c_address": 0x24,  # PN532 HAT default
        "poll_interval": 0.1,  # seconds between passive target polls
        "read_timeout": 30.0,  # seconds a read/write session waits for a tag
        "verify_timeout": 5.0,  # seconds the post-write read-back waits
        "write_settle_delay": 1.5,  # seconds between write and read-back
        "continuous_cooldown": 1.0,  # seconds between continuous scans
        "continuous_scan": False,  # run a continuous scan loop in app.py
    },

    # Batch garment lookup settings
    "lookup": {
        "max_codes": 50,
        "chunk_size": 20,
        "point_query_limit": 10,
        "max_workers": 8,
    },

    # API settings
    "api": {
        "host": "0.0.0.0",  # Listen on all interfaces
        "port": 5000,
        "threads": 4,
        "admin_pin": "1234",  # Default PIN, should be changed
        "token_duration": 3600,  # seconds
    },

    # Logging settings
    "logging": {
        "level": "INFO",
        "file": "logs/closet_nfc.log",
    },
}

# Path to user configuration file
CONFIG_PATH = os.environ.get(
    "CLOSET_NFC_CONFIG",
    os.path.expanduser("~/.closet_nfc/config.json")
)

# Global CONFIG object
CONFIG = {}


def merge_config(base, overrides):
    """
    Merge user overrides into a copy of base (shallow update per section).

    Args:
        base (dict): Default configuration
        overrides (dict): User configuration

    Returns:
        dict: Merged configuration
    """
    merged = copy.deepcopy(base)
    for section, values in (overrides or {}).items():
        if section in merged and isinstance(merged[section], dict) and isinstance(values, dict):
            merged[section].update(values)
        else:
            merged[section] = values
    return merged


def load_config(path=None):
    """
    Load configuration from file, or write the defaults if it doesn't exist.

    Args:
        path (str, optional): Config file path, defaults to CONFIG_PATH

    Returns:
        dict: The loaded configuration (also stored in CONFIG)
    """
    path = path or CONFIG_PATH
    user_config = {}

    if os.path.exists(path):
        try:
            with open(path, 'r') as f:
                user_config = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading config from {path}: {e}")
            # Continue with default config

    merged = merge_config(DEFAULT_CONFIG, user_config)
    CONFIG.clear()
    CONFIG.update(merged)

    if not os.path.exists(path):
        save_config(path)

    return CONFIG


def save_config(path=None):
    """Save current configuration to file."""
    path = path or CONFIG_PATH
    try:
        config_dir = os.path.dirname(path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(CONFIG, f, indent=4)
        return True
    except OSError as e:
        logger.error(f"Error saving config to {path}: {e}")
        return False


# Defaults are available at import; app.py calls load_config() to read the file
CONFIG.update(copy.deepcopy(DEFAULT_CONFIG))
