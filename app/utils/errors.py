"""JSON error envelope shared by every blueprint.

    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Risk item not found")
    return api_error(E.CONFLICT_STATE, "Cannot assign closed/resolved risk items",
                     details={"current_state": "CLOSED"})

Body: ``{"error": <message>, "code": <ERR_*>, "details": {...}?}``
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes.  The prefix names the HTTP family."""

    # 400: request body incomplete or malformed
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    # 422: well-formed but rejected by a workflow rule
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    NOT_FOUND = "ERR_NOT_FOUND"

    # 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_ASSIGNMENT = "ERR_CONFLICT_ASSIGNMENT"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # 500: registry / collaborator wiring, storage, anything else
    CONFIGURATION = "ERR_CONFIGURATION"
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


HTTP_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_ASSIGNMENT: 409,
    E.CONFLICT_STATE: 409,
    E.CONFIGURATION: 500,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """``(jsonify(body), status)`` for ``code``; unknown codes answer 400."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or HTTP_STATUS.get(code, 400)
