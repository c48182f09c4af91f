"""Exception hierarchy for the clinic client.

Three kinds of failure reach callers:
- FormValidationError: caught before submission, never sent to the network
- ApiError (and subclasses): the backend rejected the call or was unreachable
- OperationNotSupportedError: the backend has no endpoint for the operation
"""
from typing import Dict, Optional


class DocSmileError(Exception):
    """Base class for all client errors."""
    pass


class FormValidationError(DocSmileError):
    """Raised when form data fails client-side validation."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        fields = ", ".join(sorted(self.errors))
        super().__init__(f"Validation failed: {fields}")


class ApiError(DocSmileError):
    """Raised when a backend call fails (non-2xx or connectivity)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NotFoundError(ApiError):
    """Raised when the requested record does not exist."""

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class AuthenticationError(ApiError):
    """Raised when credentials or security answers are rejected."""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message, status_code=401)


class NotAuthenticatedError(DocSmileError):
    """Raised when an operation needs a session and there is none."""
    pass


class OperationNotSupportedError(DocSmileError):
    """Raised for operations the backend does not offer."""
    pass
