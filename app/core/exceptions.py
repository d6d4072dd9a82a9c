"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them
once and get consistent HTTP status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id=42)
    raise ValidationError("phase is required", details={"phase": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Project", "WorkflowLineItem").
        resource_id: The PK that was looked up.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint) — this
    exception signals that the data was well-formed but violated a business
    rule (e.g. unknown phase key, duplicate display order, empty import).

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation collides with existing state (duplicate or stale write).

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value (truncated in HTTP response; full in logs).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


# ── Workflow engine errors ───────────────────────────────────────────────────


class UnknownProjectError(NotFoundError):
    """Raised when a workflow operation targets a project that does not exist."""

    def __init__(self, project_id: int | str | None) -> None:
        super().__init__(resource="Project", resource_id=project_id)
        self.project_id = project_id


class UnknownLineItemError(NotFoundError):
    """Raised when a line item is not part of the tracker's resolved template.

    Args:
        line_item_id: The id that failed to resolve.
        workflow_type: Template the lookup was made against.
    """

    def __init__(self, line_item_id: int | str | None, workflow_type: str | None = None) -> None:
        super().__init__(resource="WorkflowLineItem", resource_id=line_item_id)
        self.line_item_id = line_item_id
        self.workflow_type = workflow_type
        if workflow_type:
            self.args = (f"{self.args[0]} in workflow {workflow_type}",)


class TemplateUnavailableError(Exception):
    """Raised when no active template exists for a workflow type.

    Soft-fail: callers that only need a progress denominator degrade to the
    configured default estimate and log instead of propagating.
    """

    def __init__(self, workflow_type: str, reason: str | None = None) -> None:
        self.workflow_type = workflow_type
        msg = f"Workflow template {workflow_type!r} is unavailable"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class TrackerWriteConflictError(ConflictError):
    """Raised when a tracker read-modify-write lost a concurrent version race.

    Transient: the caller may retry. Maps to HTTP 409.
    """

    def __init__(self, tracker_id: int | None, version: int | None = None) -> None:
        super().__init__(
            resource="ProjectWorkflowTracker",
            field="version",
            value=str(version) if version is not None else None,
        )
        self.tracker_id = tracker_id
        self.args = (f"ProjectWorkflowTracker id={tracker_id} was modified concurrently",)
