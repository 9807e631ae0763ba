"""
Document Approval Workflow Engine
Blueprint registry helpers.
"""

import logging

from flask import current_app, request

from docflow.core.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from docflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def page_params(default_limit=None, max_limit=None):
    """Read limit/offset query params.

    Query params:
        limit:  max items (default WORKFLOW_LIST_DEFAULT_LIMIT, capped at WORKFLOW_LIST_MAX_LIMIT)
        offset: starting position (default 0)

    Returns:
        (limit, offset)
    """
    default_limit = default_limit or current_app.config.get("WORKFLOW_LIST_DEFAULT_LIMIT", 50)
    max_limit = max_limit or current_app.config.get("WORKFLOW_LIST_MAX_LIMIT", 500)
    try:
        limit = min(max(int(request.args.get("limit", default_limit)), 1), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def register_error_handlers(bp):
    """Map domain exceptions to the standard JSON error body on ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @bp.errorhandler(InvalidTransitionError)
    def _handle_transition(error: InvalidTransitionError):
        details = {"current_state": error.current_state} if error.current_state else None
        return api_error(E.CONFLICT_STATE, str(error), details=details)

    @bp.errorhandler(ConcurrentModificationError)
    def _handle_concurrent(error: ConcurrentModificationError):
        details = None
        if error.expected_version is not None:
            details = {"expected_version": error.expected_version, "actual_version": error.actual_version}
        return api_error(E.CONFLICT_VERSION, str(error), details=details)

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error: PermissionDeniedError):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        from werkzeug.exceptions import HTTPException

        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
