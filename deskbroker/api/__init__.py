"""API module for Flask routes and helpers."""

from deskbroker.api.validators import ValidationError, validate_dimension
from deskbroker.api.responses import api_success, api_error
from deskbroker.api.auth import require_api_key

__all__ = [
    "ValidationError",
    "validate_dimension",
    "api_success",
    "api_error",
    "require_api_key",
]
