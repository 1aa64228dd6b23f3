"""Error taxonomy shared by services and route handlers.

Services raise these; ``unilib.main`` turns them into the JSON envelope
``{"success": false, "error": ..., "message": ...}`` with the matching
status code.
"""

from typing import Optional


class LibraryError(Exception):
    status_code = 500
    error = "Internal server error"
    default_message = "Something went wrong. Please try again later."

    def __init__(self, message: Optional[str] = None, error: Optional[str] = None):
        self.message = message or self.default_message
        if error is not None:
            self.error = error
        super().__init__(self.message)


class ValidationError(LibraryError):
    status_code = 400
    error = "Invalid input"
    default_message = "The request is not valid."


class AuthenticationError(LibraryError):
    status_code = 401
    error = "Unauthorized"
    default_message = "Authentication required"


class AuthorizationError(LibraryError):
    status_code = 403
    error = "Forbidden"
    default_message = "Admin access required"


class NotFoundError(LibraryError):
    status_code = 404
    error = "Not found"
    default_message = "The requested resource does not exist."


class DomainRuleError(LibraryError):
    """A business rule refused the operation.

    Answered with HTTP 200 and ``success: false`` so the UI can show
    ``reason`` as a plain message.
    """

    status_code = 200
    error = "Request not allowed"

    def __init__(self, reason: str, error: Optional[str] = None):
        self.reason = reason
        super().__init__(reason, error)
