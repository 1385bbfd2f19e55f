"""
Input validation functions for the API.
"""

from typing import Any

from deskbroker.config.settings import MAX_DIMENSION


class ValidationError(Exception):
    """Raised when input validation fails."""
    pass


def validate_dimension(name: str, value: Any, required: bool = False) -> int | None:
    """
    Validate a width or height from a JSON body.

    Zero and negative integers are accepted (the engine treats them as
    "no explicit size"); only wrong types and oversized values are rejected.

    Args:
        name: Field name, for error messages
        value: Raw value
        required: Whether the field must be present

    Returns:
        The integer value, or None when absent and not required

    Raises:
        ValidationError: If the value is invalid
    """
    if value is None:
        if required:
            raise ValidationError(f"{name} is required")
        return None

    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")

    if value > MAX_DIMENSION:
        raise ValidationError(f"{name} exceeds maximum of {MAX_DIMENSION}")

    return value
