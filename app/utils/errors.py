"""Standardised API error responses.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Project not found")
    return api_error(E.VALIDATION_REQUIRED, "name is required")

    register_error_handlers(workflow_bp)   # domain exceptions -> JSON
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    TemplateUnavailableError,
    TrackerWriteConflictError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
    """

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STALE = "ERR_CONFLICT_STALE"

    # Dependency – HTTP 503
    TEMPLATE_UNAVAILABLE = "ERR_TEMPLATE_UNAVAILABLE"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STALE: 409,
    E.TEMPLATE_UNAVAILABLE: 503,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, rejected rows, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(bp) -> None:
    """Map the platform exception hierarchy onto HTTP responses for *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(TrackerWriteConflictError)
    def _handle_stale(error: TrackerWriteConflictError):
        return api_error(E.CONFLICT_STALE, str(error), details={"retryable": True})

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(TemplateUnavailableError)
    def _handle_template_unavailable(error: TemplateUnavailableError):
        return api_error(E.TEMPLATE_UNAVAILABLE, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description or error.name}), error.code
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return jsonify({"error": "Internal server error", "detail": str(error)}), 500
