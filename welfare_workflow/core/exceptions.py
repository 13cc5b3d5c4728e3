"""
Engine-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from welfare_workflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Case", resource_id=42)
    raise ValidationError("Comments are required", details={"comments": "required"})

HTTP mapping:
    NotFoundError              → 404
    ForbiddenError             → 403
    InvalidStateError          → 409
    ConflictError              → 409
    ValidationError            → 422
    CatalogMisconfiguredError  → 422 (admin paths only; transitions degrade)
"""


class NotFoundError(Exception):
    """Raised when a case, stage, level or user does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Case", "WorkflowStage").
        resource_id: The key that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ForbiddenError(Exception):
    """Raised when the actor lacks the stage permission or role for an action.

    Args:
        action: The attempted action (approve, reject, welfare_approve, ...).
        reason: Human-readable explanation surfaced to the caller.
    """

    def __init__(self, action: str, reason: str | None = None) -> None:
        self.action = action
        self.reason = reason
        super().__init__(reason or f"Not permitted to {action} at this stage")


class InvalidStateError(Exception):
    """Raised when a transition is requested from the wrong source state.

    Args:
        message: What went wrong.
        current: The case's status (or stage state) at the time of the request.
        expected: Description of the state(s) the transition requires.
    """

    def __init__(self, message: str, current: str | None = None, expected: str | None = None) -> None:
        self.current = current
        self.expected = expected
        super().__init__(message)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised on a unique-key clash or a lost optimistic-concurrency race.

    Args:
        resource: Model name.
        field: The conflicting field (``version_id`` for stale writes).
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        if field == "version_id":
            msg = f"{resource} {value} was modified concurrently; reload and retry"
        else:
            msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class CatalogMisconfiguredError(Exception):
    """Raised when the stage catalog cannot supply a required stage.

    Transitions never raise it: a missing stage degrades to writing the
    status and history while leaving the stage pointer unchanged. Catalog
    administration raises it when an edit would leave a stage unreachable.
    """

    def __init__(self, message: str, stage_id: int | None = None) -> None:
        self.stage_id = stage_id
        super().__init__(message)
