"""
Error taxonomy shared by every layer.

Each error knows the HTTP status the (external) API boundary should answer
with, so controllers can map failures without inspecting their type.
"""

from typing import Any, Optional


class FinEdgeError(Exception):
    """Base exception for all FinEdge failures."""
    
    status_code = 500
    
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)
    
    def to_dict(self, include_detail: bool = False) -> dict[str, Any]:
        """Response body for the API boundary."""
        body: dict[str, Any] = {
            "success": False,
            "error": type(self).__name__,
            "message": self.message,
        }
        if include_detail and self.__cause__ is not None:
            body["detail"] = repr(self.__cause__)
        return body


class ValidationFailedError(FinEdgeError):
    """Malformed or out-of-range input, rejected before persistence."""
    
    status_code = 400
    
    def __init__(self, message: str, issues: Optional[list] = None):
        super().__init__(message)
        self.issues = issues or []
    
    def to_dict(self, include_detail: bool = False) -> dict[str, Any]:
        body = super().to_dict(include_detail)
        body["errors"] = [issue.model_dump() for issue in self.issues]
        return body


class UnauthorizedError(FinEdgeError):
    """Credentials were missing or wrong."""
    
    status_code = 401


class NotFoundError(FinEdgeError):
    """Identifier does not resolve to a live record."""
    
    status_code = 404
    
    def __init__(self, resource: str = "Record", record_id: Optional[str] = None):
        self.resource = resource
        self.record_id = record_id
        super().__init__(f"{resource} not found")


class ConflictError(FinEdgeError):
    """Uniqueness violation, e.g. a duplicate email."""
    
    status_code = 409
    
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field
