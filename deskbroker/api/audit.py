"""
Audit trail for state-changing session requests.

Session creation, resize and stop requests are written to the dedicated
``audit`` logger as one JSON object per line on stdout, apart from the
diagnostic log on stderr. Read-only requests are not recorded.
"""

import logging
import re
import sys

from flask import Response, request
from pythonjsonlogger.json import JsonFormatter

audit_logger = logging.getLogger("audit")
audit_logger.setLevel(logging.INFO)
audit_logger.propagate = False

if not audit_logger.handlers:
    _handler = logging.StreamHandler(sys.stdout)
    _handler.setFormatter(JsonFormatter(
        fmt="%(message)s",
        rename_fields={"message": "event"},
        timestamp=True,
    ))
    audit_logger.addHandler(_handler)

AUDITED_METHODS = frozenset({"POST", "PUT", "DELETE"})

# /api/sessions/<id> and /api/sessions/<id>/resize
SESSION_PATH = re.compile(r"^/api/sessions/([^/]+)")


def audit_entry(response: Response) -> dict:
    """Build the structured fields recorded for one request."""
    entry = {
        "method": request.method,
        "path": request.path,
        "endpoint": request.endpoint,
        "status_code": response.status_code,
        "remote_addr": request.remote_addr,
    }

    match = SESSION_PATH.match(request.path)
    if match:
        entry["session_id"] = match.group(1)
    elif response.status_code == 201 and response.is_json:
        # Creation: the new id is only known from the response body
        created = (response.get_json(silent=True) or {}).get("data") or {}
        if "id" in created:
            entry["session_id"] = created["id"]
            entry["display"] = created.get("display")

    body = request.get_json(silent=True) if request.is_json else None
    if isinstance(body, dict):
        for key in ("width", "height"):
            if key in body:
                entry[key] = body[key]
    return entry


def audit_log_response(response: Response) -> Response:
    """after_request hook recording write requests on the API blueprint."""
    if request.method in AUDITED_METHODS:
        audit_logger.info("api_session_action", extra=audit_entry(response))
    return response
