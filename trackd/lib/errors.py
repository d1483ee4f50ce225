"""
Error types for trackd.

Every error names the work unit and the operation that detected it so the
CLI can print an actionable message without extra context.
"""


class TrackdError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, work_unit_id: str | None = None, operation: str | None = None):
        self.message = message
        self.work_unit_id = work_unit_id
        self.operation = operation
        super().__init__(message)

    def with_context(self, work_unit_id: str | None = None, operation: str | None = None) -> "TrackdError":
        """Fill in missing id/operation and return self (for re-raising)."""
        if self.work_unit_id is None:
            self.work_unit_id = work_unit_id
        if self.operation is None:
            self.operation = operation
        return self

    def __str__(self) -> str:
        prefix = ""
        if self.operation:
            prefix += f"[{self.operation}] "
        if self.work_unit_id:
            prefix += f"{self.work_unit_id}: "
        return prefix + self.message


class NotFound(TrackdError):
    """Referenced work unit has no backing files."""


class AlreadyExists(TrackdError):
    """Work unit id collides with an existing unit."""


class Corrupt(TrackdError):
    """Metadata record or registry document cannot be deserialized."""


class IndexOutOfRange(TrackdError):
    """Task path does not resolve within a plan."""


class InvalidWorkUnitId(TrackdError, ValueError):
    """Work unit id does not match the id pattern."""


class MalformedPlan(TrackdError):
    """Plan document violates the heading/checkbox grammar."""

    def __init__(self, message: str, line_number: int | None = None,
                 work_unit_id: str | None = None, operation: str | None = None):
        self.line_number = line_number
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message, work_unit_id, operation)


class PartialData(TrackdError):
    """Non-fatal per-unit problem found while aggregating a report."""

    def __init__(self, message: str, work_unit_id: str | None = None,
                 operation: str | None = None, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message, work_unit_id, operation)


class InvalidTransition(TrackdError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, from_status: str, to_status: str,
                 work_unit_id: str | None = None, operation: str | None = "set_status"):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status} -> {to_status}", work_unit_id, operation)
