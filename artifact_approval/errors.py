"""
Error taxonomy for the approval engine.

Every error carries a stable ``code`` for programmatic handling and an
``http_status`` the API layer uses when rendering it.
"""

from typing import Any, Dict, Optional


class ApprovalError(Exception):
    """Base class for all engine errors."""

    code = "APPROVAL_ERROR"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(ApprovalError):
    """A referenced artifact, project, workflow, step or SLA window is missing."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        self.resource = resource
        self.resource_id = resource_id
        message = (
            f"{resource} with id '{resource_id}' not found"
            if resource_id
            else f"{resource} not found"
        )
        super().__init__(message)


class ValidationError(ApprovalError):
    """An operation was attempted from a state, or by an actor, the guards forbid."""

    code = "VALIDATION_ERROR"
    http_status = 400


class PermissionDenied(ApprovalError):
    """The caller lacks the capability required for an operation."""

    code = "FORBIDDEN"
    http_status = 403


class DependencyError(ApprovalError):
    """A collaborator (risk assessment, SLA tracking, persistence) failed."""

    code = "DEPENDENCY_ERROR"
    http_status = 502

    def __init__(self, service: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__(f"{service}: {message}", details)
