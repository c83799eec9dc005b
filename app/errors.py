"""
Error taxonomy shared by the services and rendered by the API layer.
"""
from typing import Optional


class FamilyTasksError(Exception):
    """Base error carrying a stable code and the HTTP status it maps to."""

    code = "SERVER_ERROR"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class UnauthorizedError(FamilyTasksError):
    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Not authenticated"


class ForbiddenError(FamilyTasksError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Not allowed"


class NotFoundError(FamilyTasksError):
    # Also used for entities that exist but are not eligible for the request
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class ValidationFailedError(FamilyTasksError):
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Invalid input data"


class InsufficientPointsError(FamilyTasksError):
    code = "INSUFFICIENT_POINTS"
    status_code = 400
    default_message = "Insufficient points"


class ConflictError(FamilyTasksError):
    code = "CONFLICT"
    status_code = 409
    default_message = "Already exists"
