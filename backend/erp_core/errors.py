from fastapi import status


class ERPError(Exception):
    """Base for failures that map onto a client-facing ``{"message": ...}`` response."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class MalformedRequest(ERPError):
    default_message = "Invalid login credentials provided"


class InvalidCredentials(ERPError):
    default_message = "Invalid credentials"


class NoActiveDependents(ERPError):
    default_message = "No active students found for this parent account"


class InvalidOrExpiredToken(ERPError):
    default_message = "Invalid or expired link"


class Unauthorized(ERPError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authenticated"


class Forbidden(ERPError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized to access this resource"


class NotFound(ERPError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Conflict(ERPError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Already exists"


class ServerError(ERPError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Server error"
