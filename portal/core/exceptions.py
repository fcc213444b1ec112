"""
Portal-wide exception hierarchy.

Services raise these types; the application factory registers one
handler per type so every blueprint gets the same status codes and the
same ``{error, code, details}`` body.

Usage:
    from portal.core.exceptions import NotFoundError, IllegalTransitionError

    raise NotFoundError(resource="Project", resource_id=project_id)
    raise IllegalTransitionError("creative", "requested", "live", allowed)
"""


class UnauthorizedError(Exception):
    """No caller identity could be resolved.  Maps to HTTP 401."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(Exception):
    """Caller is known but lacks the required role.  Maps to HTTP 403."""

    def __init__(self, message: str = "You do not have access to this resource") -> None:
        super().__init__(message)


class NotFoundError(Exception):
    """Raised when a requested resource does not exist or is not visible.

    Used for BOTH genuinely missing records AND projects the caller has no
    membership on, so a 404 never confirms that a hidden project exists.

    Args:
        resource: Human-readable entity name (e.g. "Project", "TrendCluster").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Malformed or missing input.  Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown, keyed by field name.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Workflow rule violations ─────────────────────────────────────────────────

class WorkflowRuleError(Exception):
    """Base for business-rule violations that carry the allowed set.

    Subclasses set ``code`` to the machine-readable error code used in the
    API response.  ``allowed`` is always a sorted list so clients can show
    the valid options.
    """

    code = "ERR_WORKFLOW_RULE"

    def __init__(self, message: str, allowed=()) -> None:
        self.allowed = sorted(allowed)
        super().__init__(message)


class InvalidStateError(WorkflowRuleError):
    """Department unknown, or a status outside the department's domain."""

    code = "ERR_INVALID_STATE"


class NoTransitionsDefinedError(WorkflowRuleError):
    """The current status declares no outgoing edges."""

    code = "ERR_NO_TRANSITIONS"


class IllegalTransitionError(WorkflowRuleError):
    """The requested status is not a declared edge from the current one."""

    code = "ERR_ILLEGAL_TRANSITION"

    def __init__(self, department: str, current: str, requested: str, allowed=()) -> None:
        self.department = department
        self.current_status = current
        self.requested_status = requested
        super().__init__(
            f"Cannot move {department} project from '{current}' to '{requested}'",
            allowed,
        )


class TerminalDepartmentError(WorkflowRuleError):
    """Promotion attempted from a department with no promotion targets."""

    code = "ERR_TERMINAL_DEPARTMENT"


class InvalidPromotionPathError(WorkflowRuleError):
    """Target department is not reachable from the source department."""

    code = "ERR_INVALID_PROMOTION_PATH"


class InvalidTypeError(WorkflowRuleError):
    """Project type does not belong to the department's type enum."""

    code = "ERR_INVALID_TYPE"


# ── State / persistence ─────────────────────────────────────────────────────

class ConflictError(Exception):
    """Operation not valid in the entity's current state, or a stale write.

    Maps to HTTP 409.

    Args:
        message: Human-readable explanation.
        current_status: Optional status observed at the time of the conflict.
    """

    def __init__(self, message: str, current_status: str | None = None) -> None:
        self.current_status = current_status
        super().__init__(message)


class PersistenceError(Exception):
    """The store rejected a write that had passed validation.  Maps to HTTP 500."""
