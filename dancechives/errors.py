"""Error taxonomy shared by the graph layer, the workflow and the API."""

from __future__ import annotations


class DanceChivesError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    code = "Error"
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(DanceChivesError):
    status_code = 400
    code = "ValidationError"
    default_message = "Invalid request."


class InvalidRole(ValidationError):
    code = "InvalidRole"
    default_message = "Invalid role."


class Unauthorized(DanceChivesError):
    """Raised when the caller is unauthenticated or acts on someone else's data."""

    status_code = 401
    code = "Unauthorized"
    default_message = "Not authenticated."


class Forbidden(Unauthorized):
    status_code = 403
    code = "Forbidden"
    default_message = "You do not have permission to do that."


class NotFound(DanceChivesError):
    status_code = 404
    code = "NotFound"
    default_message = "Not found."


class TargetNotFound(NotFound):
    code = "TargetNotFound"
    default_message = "Target not found."


class UserNotFound(NotFound):
    code = "UserNotFound"
    default_message = "User not found."


class TagNotFound(NotFound):
    code = "TagNotFound"
    default_message = "Tag not found."


class Conflict(DanceChivesError):
    status_code = 409
    code = "Conflict"
    default_message = "Conflicting request."


class AlreadyTagged(Conflict):
    code = "AlreadyTagged"
    default_message = "User is already tagged with this role."


class InternalError(DanceChivesError):
    """Unexpected store failure; the message is safe to show to callers."""

    status_code = 500
    code = "InternalError"
    default_message = "Internal server error"
