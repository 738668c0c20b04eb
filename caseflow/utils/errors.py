"""Standardised API error responses.

Usage
-----
    from caseflow.utils.errors import api_error, refusal_response, E

    return api_error(E.NOT_FOUND, "Case not found")
    return api_error(E.GATE_BLOCKED, gate.message, details=gate.to_dict())
    return refusal_response(refusal)
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every error the API returns
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Workflow refusals – HTTP 422
    TEMPLATE_INVALID = "ERR_TEMPLATE_INVALID"
    UNKNOWN_STATE = "ERR_UNKNOWN_STATE"
    GATE_BLOCKED = "ERR_GATE_BLOCKED"
    AUTOMATION_REFUSED = "ERR_AUTOMATION_REFUSED"
    JOURNEY_DISABLED = "ERR_JOURNEY_DISABLED"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.TEMPLATE_INVALID: 422,
    E.UNKNOWN_STATE: 422,
    E.GATE_BLOCKED: 422,
    E.AUTOMATION_REFUSED: 422,
    E.JOURNEY_DISABLED: 422,
    E.DATABASE: 500,
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
        Human-readable explanation naming what is missing or wrong.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (missing fields, incomplete tasks, ...).

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


def refusal_response(refusal, *, status: int | None = None):
    """Render a ``Refusal`` returned by a service."""
    return api_error(refusal.code, refusal.message, status=status, details=refusal.details)
