"""
Shared-secret authentication for the session API.

Every blueprint route except those listed in PUBLIC_ENDPOINTS requires the
broker key, sent either as ``X-API-Key`` or as a bearer token. The key comes
from ``BROKER_API_KEY`` or, when that is unset, from the file named by
``BROKER_API_KEY_FILE`` (container secret mounts). With neither configured the
API refuses to serve.
"""

from __future__ import annotations

import hmac
import logging
from pathlib import Path

from flask import Response, request

from deskbroker.api.responses import api_error
from deskbroker.config.settings import get_env

logger = logging.getLogger("desktop-broker")

# Flask endpoint names reachable without a key; swagger adds its own
PUBLIC_ENDPOINTS = {"api.health"}

BEARER_PREFIX = "Bearer "


def configured_key() -> str | None:
    """The broker key, or None when authentication is not configured."""
    key = get_env("broker_api_key")
    if key:
        return key

    key_file = get_env("broker_api_key_file")
    if not key_file:
        return None
    try:
        key = Path(key_file).read_text().strip()
    except OSError as e:
        logger.error(f"Cannot read API key file {key_file}: {e}")
        return None
    return key or None


def presented_key() -> str | None:
    """Key sent by the client, header first, then bearer token."""
    header_key = request.headers.get("X-API-Key")
    if header_key:
        return header_key
    authorization = request.headers.get("Authorization", "")
    if authorization.startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX):] or None
    return None


def require_api_key() -> tuple[Response, int] | None:
    """
    before_request hook guarding the API blueprint.

    Returns:
        None to let the request through, or a 503 (no key configured)
        / 401 (missing or wrong key) response
    """
    if request.endpoint in PUBLIC_ENDPOINTS:
        return None

    expected = configured_key()
    if expected is None:
        logger.warning(f"Rejecting {request.method} {request.path}: no API key configured")
        return api_error("API key not configured. Service unavailable.", 503)

    supplied = presented_key()
    if supplied is None:
        return api_error("API key required. Use X-API-Key header or Authorization: Bearer <key>.", 401)

    if not hmac.compare_digest(supplied.encode(), expected.encode()):
        logger.warning(f"Invalid API key from {request.remote_addr} on {request.path}")
        return api_error("Invalid API key.", 401)

    return None
