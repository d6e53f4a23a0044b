"""
validators.py - Input validation utilities for the closet NFC backend.

This module provides validation functions for request payloads and scanned codes.
"""

import re
from typing import List, Optional

from .exceptions import ValidationError

ENTITY_TYPES = ('garment', 'box')

# Separators accepted between codes typed or scanned in a batch
CODE_SEPARATORS = re.compile(r'[/,\n\r\t; ]+')


def normalize_code(code: str) -> str:
    """Trim and uppercase a scanned NFC or barcode value."""
    return (code or '').strip().upper()


def parse_code_list(raw_codes) -> List[str]:
    """
    Split a batch of scanned codes into normalized, non-empty codes.

    Args:
        raw_codes (str or list): Codes separated by "/", commas, whitespace
                                 or semicolons, or an already split list

    Returns:
        list: Normalized codes in input order
    """
    if raw_codes is None:
        return []

    if isinstance(raw_codes, str):
        parts = CODE_SEPARATORS.split(raw_codes)
    else:
        parts = []
        for item in raw_codes:
            parts.extend(CODE_SEPARATORS.split(str(item)))

    return [code for code in (normalize_code(p) for p in parts) if code]


def validate_entity_type(entity_type: str) -> str:
    """
    Validate that an entity type names a taggable table.

    Raises:
        ValidationError: If the entity type is unknown
    """
    if entity_type not in ENTITY_TYPES:
        raise ValidationError(
            f"entity_type must be one of {', '.join(ENTITY_TYPES)}",
            {'entity_type': entity_type}
        )
    return entity_type


def validate_required(value, field_name: str):
    """
    Validate that a required value is not None or empty.

    Args:
        value: Value to validate
        field_name (str): Name of the field for error message

    Raises:
        ValidationError: If value is None or empty
    """
    if value is None or (isinstance(value, (str, list, dict)) and not value):
        raise ValidationError(f"{field_name} is required")

    return value


def validate_length(value: str, field_name: str, min_length: int = 0, max_length: Optional[int] = None):
    """
    Validate string length.

    Args:
        value (str): String to validate
        field_name (str): Name of the field for error message
        min_length (int, optional): Minimum length required
        max_length (int, optional): Maximum length allowed

    Raises:
        ValidationError: If string length is invalid
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")

    if min_length > 0 and len(value) < min_length:
        raise ValidationError(f"{field_name} must be at least {min_length} characters")

    if max_length and len(value) > max_length:
        raise ValidationError(f"{field_name} cannot exceed {max_length} characters")

    return value
