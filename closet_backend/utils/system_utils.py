"""
system_utils.py - Host platform probes used by the NFC support report.
"""

import os
import platform
import socket
from typing import Any, Dict

from .logger import get_logger

logger = get_logger(__name__)


def is_running_on_pi() -> bool:
    """
    Check if code is running on a Raspberry Pi.

    Returns:
        bool: True if running on a Raspberry Pi
    """
    try:
        with open('/proc/cpuinfo', 'r') as f:
            cpuinfo = f.read()
    except OSError:
        return False
    return 'Raspberry Pi' in cpuinfo or 'BCM' in cpuinfo


def i2c_device_path(i2c_bus: int) -> str:
    """Return the character device path for an I2C bus."""
    return f"/dev/i2c-{i2c_bus}"


def get_platform_info(i2c_bus: int = 1) -> Dict[str, Any]:
    """
    Get the host details that decide whether the NFC HAT can work here.

    Returns:
        dict: os name/version, hostname, Raspberry Pi detection and
              whether the I2C bus device node exists
    """
    info = {
        'os_name': platform.system(),
        'os_version': platform.release(),
        'machine': platform.machine(),
        'hostname': socket.gethostname(),
        'is_raspberry_pi': is_running_on_pi(),
        'i2c_device': i2c_device_path(i2c_bus),
        'i2c_available': os.path.exists(i2c_device_path(i2c_bus)),
    }
    logger.debug(f"Platform info: {info}")
    return info
