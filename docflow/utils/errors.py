"""JSON error responses for the workflow API.

Every error body has the same shape::

    {"error": "<message>", "code": "ERR_...", "details": {...}}

``details`` is present only when there is something structured to report
(per-field validation messages, expected/actual versions, current state).

    from docflow.utils.errors import api_error, E

    return api_error(E.VALIDATION_REQUIRED, "template_id is required")
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes. Clients branch on these, never on the message text."""

    # 400: request could not be read
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # 422: well-formed but breaks a workflow rule
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # 403 / 404
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"

    # 409: duplicate name, wrong lifecycle state, or stale version
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_VERSION = "ERR_CONFLICT_VERSION"

    # 500
    INTERNAL = "ERR_INTERNAL"


HTTP_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_VERSION: 409,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for a Flask view or error handler.

    The status comes from HTTP_STATUS unless overridden; unknown codes map
    to 400.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or HTTP_STATUS.get(code, 400)
