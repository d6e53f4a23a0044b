"""
Utils Module - Common utility functions and classes for the closet NFC backend.

This package provides reusable utilities for logging, error handling,
validation, event communication and platform probing.
"""

from .exceptions import (
    AppError,
    ValidationError,
    ConfigurationError
)

from .logger import (
    setup_logger,
    configure_logging,
    get_logger,
    set_global_log_level
)

from .validators import (
    ENTITY_TYPES,
    normalize_code,
    parse_code_list,
    validate_entity_type,
    validate_required,
    validate_length
)

from .event_bus import (
    event_bus,
    EventBus,
    EventNames
)

from .system_utils import (
    get_platform_info,
    is_running_on_pi
)

__version__ = '0.1.0'
