"""
Error taxonomy for the task tracker core.

Every failure the core surfaces is a TrackerError subclass carrying a stable
code, a human-readable message and the HTTP status the presentation layer
should use. Raw storage exceptions never cross this boundary: the store wraps
them in StorageFailure.
"""

from typing import Any, Dict, List, Optional


class TrackerError(Exception):
    """Base class for all domain and infrastructure errors."""

    code = "tracker_error"
    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Structured failure result in the shared success/message format."""
        response: Dict[str, Any] = {
            "success": False,
            "error": self.code,
            "message": self.message,
        }
        response.update({k: v for k, v in self.details.items() if v is not None})
        return response


class ValidationError(TrackerError):
    """Malformed or missing input, caught before any store access."""

    code = "invalid_input"
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message, errors=list(errors) if errors else [message])
        self.errors = self.details["errors"]


# Name used by the collaborator contracts
InvalidInput = ValidationError


class NotFound(TrackerError):
    code = "not_found"
    status_code = 404


class InvalidOperation(TrackerError):
    """The request is well-formed but not allowed in the current state."""

    code = "invalid_operation"
    status_code = 400


class ColumnInUse(InvalidOperation):
    code = "column_in_use"


class HierarchyViolation(TrackerError):
    code = "hierarchy_violation"
    status_code = 400

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class UnknownStatus(TrackerError):
    code = "unknown_status"
    status_code = 400

    def __init__(self, status: Optional[str], valid_statuses: List[str]):
        super().__init__(
            f"Invalid status '{status}' for this project. Must be one of the project board columns.",
            valid_statuses=list(valid_statuses),
        )
        self.status = status
        self.valid_statuses = list(valid_statuses)


class CrossProjectViolation(TrackerError):
    code = "cross_project_violation"
    status_code = 400


class StorageFailure(TrackerError):
    """Infrastructure error raised by the entity store."""

    code = "storage_failure"
    status_code = 500
