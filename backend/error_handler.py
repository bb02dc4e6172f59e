"""Centralized error handling with structured JSON error responses.

Custom exception hierarchy with error codes and HTTP status mapping.
All MoviePollsError subtypes are caught by the Flask error handlers and
returned as structured JSON, except UnauthorizedError which redirects the
browser to the login page.
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Optional

from flask import jsonify, g, redirect

logger = logging.getLogger(__name__)


# ─── Exception Hierarchy ─────────────────────────────────────────────────────


class MoviePollsError(Exception):
    """Base exception for all MoviePolls application errors.

    Attributes:
        code: Machine-readable error code (e.g. "NOT_FOUND")
        http_status: HTTP status code to return
        context: Additional context data for debugging
        troubleshooting: Human-readable hint for resolving the issue
    """

    code: str = "MP_000"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
        context: Optional[dict] = None,
        troubleshooting: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.context = context or {}
        self.troubleshooting = troubleshooting


class NotFoundError(MoviePollsError):
    """Lookup by id or name found nothing."""

    code = "NOT_FOUND"
    http_status = 404


class InvalidInputError(MoviePollsError):
    """Form validation, link parsing and similar input problems."""

    code = "INVALID_INPUT"
    http_status = 400


class FormError(InvalidInputError):
    """One or more form fields failed validation.

    ``field_errors`` maps the form field name to its message so the caller
    can re-render the form with per-field feedback.
    """

    code = "FORM_INVALID"

    def __init__(self, field_errors: dict, message: str = "Form validation failed", **kwargs: object) -> None:
        super().__init__(message, context={"fields": dict(field_errors)}, **kwargs)  # type: ignore[arg-type]
        self.field_errors = dict(field_errors)


class ConfigTypeError(InvalidInputError):
    """A config value was read through the getter of another type."""

    code = "CFG_TYPE"


class MetadataError(InvalidInputError):
    """An external metadata provider could not fill in a nomination."""

    code = "META_001"


class ConflictError(MoviePollsError):
    """Duplicate name/movie/extId or removal of the last auth method."""

    code = "CONFLICT"
    http_status = 400


class UnauthorizedError(MoviePollsError):
    """Missing session, wrong password or stale session marker."""

    code = "UNAUTHORIZED"
    http_status = 401


class PolicyDisabledError(MoviePollsError):
    """The requested action is switched off by site configuration."""

    code = "POLICY_DISABLED"
    http_status = 400


class NoValueError(MoviePollsError):
    """A config key is absent. Carries the caller supplied default."""

    code = "CFG_NO_VALUE"
    http_status = 500

    def __init__(self, key: str, default: object = None) -> None:
        super().__init__(f"No value for config key {key!r}", context={"key": key})
        self.key = key
        self.default = default


class InternalError(MoviePollsError):
    """Persistence or I/O failure."""

    code = "INTERNAL"
    http_status = 500


class DatabaseError(InternalError):
    """Database operation errors."""

    code = "DB_001"
    http_status = 500


# ─── Structured Error Response Builder ───────────────────────────────────────


def _build_error_response(error: MoviePollsError) -> dict:
    """Build a structured JSON error response from a MoviePollsError."""
    response: dict = {
        "error": str(error),
        "code": error.code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    request_id = getattr(g, "request_id", None)
    if request_id:
        response["request_id"] = request_id

    if error.context:
        response["context"] = error.context

    if error.troubleshooting:
        response["troubleshooting"] = error.troubleshooting

    return response


# ─── Flask Error Handler Registration ────────────────────────────────────────


def register_error_handlers(app: object) -> None:
    """Register global error handlers on a Flask app.

    Call this once during app setup to install:
    - UnauthorizedError handler (redirect to /user/login)
    - MoviePollsError handler (structured JSON)
    - Generic Exception handler (500 with logging)
    - before_request hook for request IDs
    """
    from flask import Flask
    flask_app: Flask = app  # type: ignore[assignment]

    @flask_app.before_request
    def _set_request_id() -> None:
        """Assign a unique request ID to every incoming request."""
        g.request_id = str(uuid.uuid4())[:8]

    @flask_app.errorhandler(UnauthorizedError)
    def _handle_unauthorized(error: UnauthorizedError):  # type: ignore[return]
        logger.info("Unauthorized (request_id=%s): %s", getattr(g, "request_id", "?"), error)
        return redirect("/user/login", code=302)

    @flask_app.errorhandler(MoviePollsError)
    def _handle_moviepolls_error(error: MoviePollsError):  # type: ignore[return]
        """Return structured JSON for known application errors."""
        if isinstance(error, InternalError):
            logger.error(
                "[%s] %s: %s (request_id=%s)",
                error.code,
                error.__class__.__name__,
                error,
                getattr(g, "request_id", "?"),
            )
        else:
            logger.debug(
                "[%s] %s: %s (request_id=%s)",
                error.code,
                error.__class__.__name__,
                error,
                getattr(g, "request_id", "?"),
            )
        return jsonify(_build_error_response(error)), error.http_status

    @flask_app.errorhandler(Exception)
    def _handle_generic_error(error: Exception):  # type: ignore[return]
        """Catch-all: log full traceback, return generic 500."""
        # Don't intercept HTTPException (404, 405, etc.); Flask renders those
        from werkzeug.exceptions import HTTPException
        if isinstance(error, HTTPException):
            return error

        request_id = getattr(g, "request_id", "?")
        logger.exception(
            "Unhandled exception (request_id=%s): %s", request_id, error
        )
        return jsonify({
            "error": "Internal server error",
            "code": "INTERNAL_ERROR",
            "request_id": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }), 500
