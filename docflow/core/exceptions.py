"""
Workflow engine exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from docflow.core.exceptions import NotFoundError, InvalidTransitionError

    raise NotFoundError(resource="WorkflowInstance", resource_id=42)
    raise InvalidTransitionError("Task 7 is not pending", current_state="COMPLETED")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "WorkflowTemplate").
        resource_id: The PK that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value. Maps to HTTP 409."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class InvalidTransitionError(Exception):
    """Raised when an action is attempted from a state that does not allow it.

    Examples: completing an already completed or voided task, cancelling a
    terminal instance, resuming an instance that is not on hold.
    Maps to HTTP 409.
    """

    def __init__(self, message: str, current_state: str | None = None) -> None:
        self.current_state = current_state
        super().__init__(message)


class NoApproversAvailableError(Exception):
    """A required step resolved to an empty approver pool.

    Not surfaced over HTTP: the orchestrator turns it into a REJECTED
    instance with a descriptive history entry.
    """

    def __init__(self, step_order: int, step_name: str) -> None:
        self.step_order = step_order
        self.step_name = step_name
        super().__init__(f"step {step_order} '{step_name}' resolved to no approvers")


class ConcurrentModificationError(Exception):
    """Optimistic version conflict on a workflow instance.

    The caller must re-read the instance and retry. Maps to HTTP 409.
    """

    def __init__(self, instance_id: int, expected_version: int | None = None,
                 actual_version: int | None = None) -> None:
        self.instance_id = instance_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        msg = f"WorkflowInstance id={instance_id} was modified concurrently"
        if expected_version is not None:
            msg += f" (expected version {expected_version}, found {actual_version})"
        super().__init__(msg)


class PermissionDeniedError(Exception):
    """Actor is not allowed to perform an administrative action. Maps to HTTP 403."""


class ImmutableRecordError(Exception):
    """Raised on any attempt to update or delete an append-only audit row."""
