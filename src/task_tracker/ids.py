"""
Identifier & Reference Layer

Opaque entity identifiers for every stored document. Identifiers are uuid4
hex strings; anything else is rejected before a store lookup happens so
malformed input surfaces as a 400-class error instead of a miss.
"""

import re
import uuid
from typing import Any

from .errors import ValidationError

_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def new_id() -> str:
    """Return a fresh opaque identifier."""
    return uuid.uuid4().hex


def is_valid_id(value: Any) -> bool:
    """Return True if value is a well-formed identifier string."""
    return isinstance(value, str) and bool(_ID_PATTERN.match(value))


def require_id(value: Any, label: str = "ID") -> str:
    """
    Validate an identifier and return it.

    Raises:
        ValidationError: If the identifier is malformed
    """
    if not is_valid_id(value):
        raise ValidationError(f"Invalid {label}", errors=[f"{label} '{value}' is not a valid identifier"])
    return value

