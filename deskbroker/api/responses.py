"""
JSON envelopes shared by every API route.

Success: ``{"success": true, "data": ..., "message": ...}``
Failure: ``{"success": false, "error": ..., "details": ...}``
"""

from typing import Any

from flask import Response, jsonify

from deskbroker.domain.errors import (
    AllocationExhausted,
    BrokerError,
    GeometryFailure,
    LaunchFailure,
    SessionNotFound,
)

JsonResponse = tuple[Response, int]


def api_success(data: Any = None, message: str | None = None, status_code: int = 200) -> JsonResponse:
    """Wrap a payload in the success envelope."""
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return jsonify(body), status_code


def api_error(message: str, status_code: int = 400, details: Any = None) -> JsonResponse:
    """Wrap an error message (and optional structured details) in the failure envelope."""
    body: dict[str, Any] = {"success": False, "error": message}
    if details:
        body["details"] = details
    return jsonify(body), status_code


def broker_error(exc: BrokerError) -> JsonResponse:
    """
    Map a domain error to its HTTP response.

    Args:
        exc: Error raised by the session engine

    Returns:
        Failure envelope with the status code matching the error kind
    """
    if isinstance(exc, SessionNotFound):
        return api_error("Session not found", 404)
    if isinstance(exc, AllocationExhausted):
        return api_error("No display available", 503, details={"limit": exc.limit})
    if isinstance(exc, LaunchFailure):
        return api_error("Failed to create session", 500, details={"role": exc.role, "program": exc.program})
    if isinstance(exc, GeometryFailure):
        return api_error("Resize failed", 409, details={"stage": exc.stage})
    return api_error(str(exc), 500)
