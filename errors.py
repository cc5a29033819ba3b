"""
Error taxonomy for the journal service.

Every error carries the HTTP status it maps to and a public message that is
safe to show to the browser. Detailed causes (engine errors, remote bodies)
are logged by the raiser and never put into ``message``.
"""

from typing import Optional


class JournalError(Exception):
    status_code = 500
    default_message = "Server error. Please try again later."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message}


class ValidationError(JournalError):
    status_code = 400
    default_message = "All fields are required"


class DuplicateUserError(JournalError):
    status_code = 400
    default_message = "User already exists with this email address"


class InvalidCredentials(JournalError):
    # Same message for unknown email and wrong password.
    status_code = 401
    default_message = "Invalid email or password"


class AuthRequiredError(JournalError):
    status_code = 401
    default_message = "Authentication required"


class StorageError(JournalError):
    status_code = 500
    default_message = "Database error. Please try again."


class SessionError(JournalError):
    status_code = 500
    default_message = "Could not log out"


class AIServiceError(JournalError):
    """Remote generative-text call failed. ``kind`` says how."""

    status_code = 502
    default_message = "Failed to generate AI analysis"

    KINDS = {"config", "network", "timeout", "auth", "rate_limit", "http", "malformed"}

    def __init__(self, kind: str, detail: str = ""):
        super().__init__()
        self.kind = kind if kind in self.KINDS else "http"
        self.detail = detail
