"""
OpenAPI 2.0 description of the session API, served by Flasgger.

Swagger UI lives at /apidocs/ and the raw document at /apispec_1.json; both
are public and exempt from rate limiting.
"""

from __future__ import annotations

from flask import Flask
from flasgger import Swagger

from deskbroker import __version__


def _integer(example: int | None = None) -> dict:
    schema: dict = {"type": "integer"}
    if example is not None:
        schema["example"] = example
    return schema


def _object(required: list[str] | None = None, **properties: dict) -> dict:
    schema: dict = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _api_key_header(name: str, description: str) -> dict:
    return {"type": "apiKey", "in": "header", "name": name, "description": description}


SWAGGER_TEMPLATE: dict = {
    "info": {
        "title": "Desktop Session Broker API",
        "version": __version__,
        "description": "Create, inspect, resize and stop isolated virtual desktop sessions.",
    },
    "securityDefinitions": {
        "ApiKeyAuth": _api_key_header("X-API-Key", "Broker API key."),
        "BearerAuth": _api_key_header("Authorization", "Broker API key as 'Bearer <key>'."),
    },
    "definitions": {
        "Envelope": _object(
            success={"type": "boolean"},
            data={"type": "object"},
            message={"type": "string"},
            error={"type": "string"},
            details={"type": "object"},
        ),
        "Health": _object(
            status={"type": "string", "enum": ["healthy", "unhealthy"]},
            version={"type": "string"},
            sessions=_integer(),
        ),
        "Session": _object(
            id={"type": "string", "format": "uuid"},
            display={"type": "string", "example": ":100"},
            bridgePort=_integer(6080),
            createdAt={"type": "string", "format": "date-time"},
            width=_integer(1920),
            height=_integer(1080),
            state={"type": "string", "enum": ["running", "resizing"]},
        ),
        "CreateSession": _object(width=_integer(1920), height=_integer(1080)),
        "Resize": _object(required=["width", "height"], width=_integer(1280), height=_integer(720)),
    },
    "paths": {
        "/api/sessions": {
            "post": {
                "summary": "Start a desktop session",
                "parameters": [{"in": "body", "name": "body", "schema": {"$ref": "#/definitions/CreateSession"}}],
                "responses": {
                    "201": {"description": "Session running; data holds id, bridgePort, display"},
                    "500": {"description": "A desktop program failed to start"},
                    "503": {"description": "No display number left"},
                },
            },
            "get": {
                "summary": "List live sessions",
                "responses": {"200": {"description": "data.sessions, oldest first"}},
            },
        },
        "/api/sessions/{session_id}": {
            "get": {
                "summary": "Describe one session",
                "responses": {
                    "200": {"description": "Session", "schema": {"$ref": "#/definitions/Session"}},
                    "404": {"description": "Unknown session"},
                },
            },
            "delete": {
                "summary": "Stop a session",
                "responses": {"200": {"description": "Stopped"}, "404": {"description": "Unknown session"}},
            },
        },
        "/api/sessions/{session_id}/resize": {
            "post": {
                "summary": "Change a session's display size",
                "parameters": [{"in": "body", "name": "body", "schema": {"$ref": "#/definitions/Resize"}}],
                "responses": {
                    "200": {"description": "Applied"},
                    "404": {"description": "Unknown session"},
                    "409": {"description": "Mode could not be applied; previous size kept"},
                },
            },
        },
    },
    "security": [{"ApiKeyAuth": []}, {"BearerAuth": []}],
}

SWAGGER_CONFIG: dict = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec_1",
            "route": "/apispec_1.json",
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/apidocs/",
}

DOC_ENDPOINTS = ("flasgger.apidocs", "flasgger.apispec_1", "flasgger.static")


def init_swagger(app: Flask) -> Swagger:
    """Mount Swagger UI and open its endpoints to unauthenticated clients."""
    from deskbroker.api import auth
    from deskbroker.api.rate_limit import limiter

    swagger = Swagger(app, template=SWAGGER_TEMPLATE, config=SWAGGER_CONFIG)

    for endpoint in DOC_ENDPOINTS:
        view = app.view_functions.get(endpoint)
        if view is not None:
            limiter.exempt(view)
    auth.PUBLIC_ENDPOINTS.update(DOC_ENDPOINTS)
    return swagger
