"""
TaskHub API custom exceptions.

All exceptions in this module should inherit from TaskHubAPIException, so we can catch for that externally.
Each one carries the HTTP status code it is translated to by exception_handlers.py.
"""

from fastapi import status


class TaskHubAPIException(Exception):
    """Base exception for all TaskHub errors."""

    error_type = "error"

    def __init__(self, message: str, status_code: int, headers: dict[str, str] | None = None):
        self.message = message
        self.status_code = status_code
        self.headers = headers or {}
        super().__init__(self.message)


class ValidationError(TaskHubAPIException):
    """Malformed or out of range input."""

    error_type = "validation_error"

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST)


class AuthenticationError(TaskHubAPIException):
    error_type = "authentication_error"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED)


class AuthorizationError(TaskHubAPIException):
    """Raised when the permission resolver denies access."""

    error_type = "authorization_error"

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message=message, status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(TaskHubAPIException):
    error_type = "not_found_error"

    def __init__(self, message: str = "Not found"):
        super().__init__(message=message, status_code=status.HTTP_404_NOT_FOUND)


class ProjectNotFoundError(NotFoundError):
    def __init__(self, message: str = "Project not found"):
        super().__init__(message=message)


class TaskNotFoundError(NotFoundError):
    def __init__(self, message: str = "Task not found"):
        super().__init__(message=message)


class TimeSessionNotFoundError(NotFoundError):
    def __init__(self, message: str = "Time session not found"):
        super().__init__(message=message)


class QuickLinkNotFoundError(NotFoundError):
    def __init__(self, message: str = "Quick link not found"):
        super().__init__(message=message)


class UserNotFoundError(NotFoundError):
    def __init__(self, message: str = "User not found"):
        super().__init__(message=message)


class ConflictError(TaskHubAPIException):
    """
    The request clashes with the current state,
    e.g. completing a task that is already done or deleting a project that still has tasks.
    """

    error_type = "conflict_error"

    def __init__(self, message: str = "Conflict with the current state of the resource"):
        super().__init__(message=message, status_code=status.HTTP_409_CONFLICT)


class UserRegistrationError(ConflictError):
    """Exception for a failed signup, the detailed reason only goes to the logs."""

    def __init__(
        self,
        internal_logging_message: str,  # for logs, can be more detailed
        user_message: str = "Registration failed. Please try again.",  # given to end user, generic
    ):
        self.internal_logging_message = internal_logging_message
        super().__init__(message=user_message)


class InternalError(TaskHubAPIException):
    """Unexpected or storage failure. The message given to the client is always generic."""

    error_type = "internal_error"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message=message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
