"""
Platform-wide exception hierarchy.

Services raise these types; ``create_app`` registers one handler per HTTP
facing type so every blueprint gets the same status codes.

The engine-specific errors mirror the three failure classes of a phase
transition run:

    GuardEvaluationError  one process has missing or malformed case data;
                          the process is skipped, the batch continues.
    BulkWriteError        the phase's write could not be applied; the whole
                          phase is rolled back until the next firing.
    SchedulingError       a phase timer could not be armed; only that
                          phase's automation is affected.

Usage:
    from thesis_flow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Phase", resource_id=4)
    raise ValidationError("end must be after start", details={"end": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "Phase", "Review").
        resource_id: The PK that was looked up.
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

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class GuardEvaluationError(Exception):
    """Raised when a transition guard cannot be evaluated for one process."""

    def __init__(self, process_id: int | None, reason: str) -> None:
        self.process_id = process_id
        self.reason = reason
        super().__init__(f"Guard failed for process {process_id}: {reason}")


class BulkWriteError(Exception):
    """Raised when the phase update of a transition run cannot be written."""

    def __init__(self, phase_id: int, reason: str) -> None:
        self.phase_id = phase_id
        self.reason = reason
        super().__init__(f"Bulk update for phase {phase_id} failed: {reason}")


class SchedulingError(Exception):
    """Raised when a phase timer cannot be armed (configuration error)."""

    def __init__(self, phase_id: int | None, reason: str) -> None:
        self.phase_id = phase_id
        self.reason = reason
        super().__init__(f"Cannot schedule phase {phase_id}: {reason}")
