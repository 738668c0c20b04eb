"""
caseflow — Case Workflow Engine
Blueprint registry and shared view helpers.
"""

from flask import request

from caseflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from caseflow.utils.errors import E, api_error


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def json_body():
    """Request JSON as a dict; a non-object body is a validation error."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", {"body": "expected object"})
    return data


def register_error_handlers(bp):
    """Map service exceptions to the standard error body on ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error):
        return api_error(E.VALIDATION_INVALID, str(error), status=422, details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    return bp
