"""
Flask API routes for the Desktop Session Broker.
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, jsonify, request

from deskbroker import __version__
from deskbroker.config.loader import BrokerConfig
from deskbroker.api.validators import ValidationError, validate_dimension
from deskbroker.api.responses import api_error, api_success, broker_error
from deskbroker.api import rate_limit
from deskbroker.api.rate_limit import limiter
from deskbroker.api.audit import audit_log_response
from deskbroker.api.auth import require_api_key
from deskbroker.container import get_services
from deskbroker.domain.errors import AllocationExhausted, BrokerError, LaunchFailure

logger = logging.getLogger("desktop-broker")

# Type alias for Flask route returns
RouteResponse = tuple[Response, int]

api = Blueprint("api", __name__)
api.before_request(require_api_key)
api.after_request(audit_log_response)


# =============================================================================
# Health and Status
# =============================================================================

@api.route("/health")
@limiter.exempt
def health() -> RouteResponse:
    """Health check endpoint."""
    try:
        sessions = len(get_services().registry)
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return jsonify({"status": "unhealthy", "version": __version__}), 503
    return jsonify({"status": "healthy", "version": __version__, "sessions": sessions}), 200


@api.route("/api/config")
def get_config() -> RouteResponse:
    """Get broker configuration (non-sensitive)."""
    settings = BrokerConfig.settings()
    return api_success({
        "programs": settings.programs.model_dump(),
        "allocator": settings.allocator.model_dump(),
        "default_width": settings.sessions.default_width,
        "default_height": settings.sessions.default_height,
        "view_only": settings.sessions.view_only,
    })


# =============================================================================
# Sessions
# =============================================================================

@api.route("/api/sessions", methods=["POST"])
@limiter.limit(lambda: rate_limit.admin_limit)
def create_session() -> RouteResponse:
    """Provision a new desktop session."""
    data = request.get_json(silent=True) or {}
    width = validate_dimension("width", data.get("width"))
    height = validate_dimension("height", data.get("height"))

    try:
        summary = get_services().registry.create(width, height)
    except AllocationExhausted as e:
        logger.warning(f"Session creation rejected: {e}")
        return broker_error(e)
    except LaunchFailure as e:
        logger.error(f"Session creation failed: {e}")
        return broker_error(e)

    return api_success({
        "id": summary.session_id,
        "bridgePort": summary.bridge_port,
        "display": summary.display,
    }, status_code=201)


@api.route("/api/sessions")
def list_sessions() -> RouteResponse:
    """List live sessions in creation order."""
    sessions = [s.to_dict() for s in get_services().registry.list()]
    return api_success({"sessions": sessions})


@api.route("/api/sessions/<session_id>")
def get_session(session_id: str) -> RouteResponse:
    """Get a single session."""
    summary = get_services().registry.get(session_id)
    return api_success(summary.to_dict())


@api.route("/api/sessions/<session_id>", methods=["DELETE"])
@limiter.limit(lambda: rate_limit.admin_limit)
def stop_session(session_id: str) -> RouteResponse:
    """Stop a session and release its resources."""
    if not get_services().registry.stop(session_id):
        return api_error("Session not found", 404)
    return api_success(message="Session stopped")


@api.route("/api/sessions/<session_id>/resize", methods=["POST"])
def resize_session(session_id: str) -> RouteResponse:
    """Change a session's display geometry."""
    data = request.get_json(silent=True) or {}
    width = validate_dimension("width", data.get("width"), required=True)
    height = validate_dimension("height", data.get("height"), required=True)

    resized = get_services().registry.resize(session_id, width, height)
    if not resized:
        return api_error("Resize failed", 409, details={"width": width, "height": height})
    return api_success({"resized": True, "width": width, "height": height})


# =============================================================================
# Error Handlers
# =============================================================================

@api.errorhandler(ValidationError)
def handle_validation_error(e: ValidationError) -> RouteResponse:
    """Handle validation errors."""
    return api_error(str(e), 400)


@api.errorhandler(BrokerError)
def handle_broker_error(e: BrokerError) -> RouteResponse:
    """Translate engine errors that escaped a route (unknown session ids)."""
    return broker_error(e)


@api.errorhandler(500)
def handle_server_error(e: Exception) -> RouteResponse:
    """Handle 500 errors."""
    from deskbroker.observability import ERRORS_TOTAL
    ERRORS_TOTAL.labels(endpoint=request.endpoint or "unknown").inc()
    logger.error(f"Internal server error: {e}")
    return api_error("Internal server error", 500)
