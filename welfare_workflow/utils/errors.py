"""Standardised API error responses.

Usage
-----
    from welfare_workflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Case not found")
    return api_error(E.VALIDATION_REQUIRED, "action is required")
    return api_error(E.CONFLICT_STATE, "Case is not in submitted_to_welfare",
                     details={"current": "draft"})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • WORKFLOW_ prefix for transition-engine errors
    """

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Auth – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_STALE = "ERR_CONFLICT_STALE"

    # Workflow catalog – HTTP 422
    WORKFLOW_CATALOG = "WORKFLOW_CATALOG_MISCONFIGURED"

    # Throttling – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_STALE: 409,
    E.WORKFLOW_CATALOG: 422,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """``(jsonify({"error", "code", "details"?}), status)`` for a view to return.

    *status* defaults to the code's entry in ``_DEFAULT_STATUS`` (400 when the
    code is not listed). ``details`` is omitted from the body when empty.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)
