from typing import List, Optional

from fastapi import HTTPException


class ApiError(HTTPException):
    """Base for every error the API reports with a structured body."""

    default_status = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(status_code=status_code or self.default_status, detail=message)
        self.message = message

    def payload(self) -> dict:
        return {"error": self.message}

    def __str__(self):
        return self.message


class ValidationError(ApiError):
    default_status = 400

    def __init__(self, message: str = "Validation failed", details: Optional[List[dict]] = None):
        super().__init__(message)
        self.details = details or []

    def payload(self) -> dict:
        body = super().payload()
        if self.details:
            body["details"] = self.details
        return body


class InvalidRangeError(ValidationError):
    def __init__(self, message: str = "endAt must be after startAt"):
        super().__init__(message, details=[{"path": "endAt", "message": message}])


class ConflictError(ApiError):
    default_status = 409

    def __init__(self, message: str, resource: Optional[str] = None, conflict: Optional[dict] = None):
        super().__init__(message)
        self.resource = resource
        self.conflict = conflict

    def payload(self) -> dict:
        body = super().payload()
        if self.resource:
            body["resource"] = self.resource
        if self.conflict:
            body["conflict"] = self.conflict
        return body


class NotFoundError(ApiError):
    default_status = 404


class AuthError(ApiError):
    default_status = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class NetworkError(ApiError):
    """Raised by the client when the API could not be reached at all."""

    default_status = 503


def error_message(error: Exception) -> str:
    """Flatten any error into the single line shown to a user."""
    details = getattr(error, "details", None)
    if details:
        return ". ".join(d.get("message", "") for d in details if d.get("message"))
    message = getattr(error, "message", None)
    return message or "Something went wrong"
