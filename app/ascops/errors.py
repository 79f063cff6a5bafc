"""
Service error taxonomy and the JSON error envelope.

Services raise these; the Flask handlers registered here turn them into
``{"error": {"code", "message", "details", "request_id"}}`` responses.
"""

from __future__ import annotations

import uuid
from typing import Any

from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException


class ServiceError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ServiceError):
    status_code = 400
    code = "validation_error"


class AlreadyInTerminalState(ValidationError):
    code = "invalid_state"


class NotAuthenticated(ServiceError):
    status_code = 401
    code = "not_authenticated"


class Forbidden(ServiceError):
    status_code = 403
    code = "forbidden"


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"


class Conflict(ServiceError):
    status_code = 409
    code = "conflict"


class AppendOnlyViolation(RuntimeError):
    """Raised when code tries to modify or remove a write-once row."""


def _request_id() -> str:
    rid = getattr(g, "request_id", None)
    if not rid:
        rid = uuid.uuid4().hex
        g.request_id = rid
    return rid


def build_error_envelope(*, code: str, message: str, details: Any = None) -> dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "request_id": _request_id(),
        }
    }


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ServiceError)
    def _service_error(e: ServiceError):  # type: ignore[no-redef]
        if e.status_code in (403, 409):
            app.logger.warning(
                "%s: %s request_id=%s", e.code, e.message, getattr(g, "request_id", None)
            )
        body = build_error_envelope(code=e.code, message=e.message, details=e.details)
        return jsonify(body), e.status_code

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        code = (e.name or "error").lower().replace(" ", "_")
        body = build_error_envelope(code=code, message=e.description or e.name)
        return jsonify(body), e.code or 500

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):  # type: ignore[no-redef]
        # Ensure stack trace shows in logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        body = build_error_envelope(code="server_error", message="Internal server error.")
        return jsonify(body), 500
