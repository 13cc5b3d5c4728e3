"""
Welfare Case Workflow Engine
Blueprint registry and shared HTTP helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from welfare_workflow.core.exceptions import (
    CatalogMisconfiguredError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from welfare_workflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_args(default_limit=50, max_limit=500):
    """Read limit/offset query params.

    Query params:
        limit  — max items (default 50, capped at max_limit)
        offset — starting position (default 0)
    """
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def register_error_handlers(bp):
    """Map service-layer exceptions to JSON error responses on *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        return api_error(E.FORBIDDEN, str(error), details={"action": error.action})

    @bp.errorhandler(InvalidStateError)
    def _handle_invalid_state(error: InvalidStateError):
        return api_error(
            E.CONFLICT_STATE, str(error),
            details={"current": error.current, "expected": error.expected},
        )

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        code = E.CONFLICT_STALE if error.field == "version_id" else E.CONFLICT_DUPLICATE
        return api_error(code, str(error), details={"field": error.field, "value": error.value})

    @bp.errorhandler(CatalogMisconfiguredError)
    def _handle_catalog(error: CatalogMisconfiguredError):
        logger.warning("Catalog misconfiguration: %s", error, extra={"stage_id": error.stage_id})
        return api_error(E.WORKFLOW_CATALOG, str(error), details={"stage_id": error.stage_id})

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
