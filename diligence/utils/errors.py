"""Standardised API error responses.

Usage
-----
    from diligence.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Deal not found")
    return api_error(E.VALIDATION_REQUIRED, "template_id is required")
    return api_error(E.VALIDATION_RULE, "Unknown phase", details={"phase": "unknown"})
"""

from __future__ import annotations

from flask import jsonify

from diligence.core.exceptions import (
    ConflictError,
    NotFoundError,
    TransportError,
    ValidationError,
)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Malformed request – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business-rule violation – HTTP 422
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Rate limit – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Persistence – HTTP 503 / 500
    TRANSPORT = "ERR_TRANSPORT"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.RATE_LIMITED: 429,
    E.TRANSPORT: 503,
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
        Field-level breakdown (``ValidationError.details``).

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


def register_service_error_handlers(bp):
    """Attach the shared service-exception handlers to blueprint *bp*.

    NotFoundError → 404, ValidationError → 422, ConflictError → 409,
    TransportError → 503.
    """
    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(TransportError)
    def _handle_transport(error: TransportError):
        return api_error(E.TRANSPORT, str(error))

    return bp
