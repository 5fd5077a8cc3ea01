"""Exception classes for the account onboarding tool."""

from typing import Dict, Any, List, Optional


class OnboardingError(Exception):
    """Base exception for all onboarding errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class AuthenticationError(OnboardingError):
    """Raised when logon to the vault fails."""
    pass


class ConfigurationError(OnboardingError):
    """Raised when run options are invalid or the template Safe cannot be prepared."""
    pass


class ValidationError(OnboardingError):
    """Raised when an input row does not describe a usable account."""

    def __init__(self, message: str, field: Optional[str] = None, value: Optional[Any] = None):
        details = {"field": field, "value": value}
        super().__init__(message, details)
        self.field = field
        self.value = value


class CSVError(OnboardingError):
    """Raised when CSV operations fail."""

    def __init__(self, message: str, file_path: Optional[str] = None, line_number: Optional[int] = None):
        details = {"file_path": file_path, "line_number": line_number}
        super().__init__(message, details)
        self.file_path = file_path
        self.line_number = line_number


class APIError(OnboardingError):
    """Raised when the vault REST API answers with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 error_code: Optional[str] = None, response: Optional[Any] = None,
                 command: Optional[str] = None):
        """Initialize APIError.

        Parameters
        ----------
        message : str
            Server error message, or a generic one when the body has none.
        status_code : int | None
            HTTP status of the failed response.
        error_code : str | None
            Vault error code (``ErrorCode`` in the response body), e.g. ``SFWS0007``.
        response : Any
            Decoded response body, if any.
        command : str | None
            ``"<METHOD> <path>"`` of the request that failed.
        """
        details = {"status_code": status_code, "error_code": error_code,
                   "response": response, "command": command}
        super().__init__(message, details)
        self.status_code = status_code
        self.error_code = error_code
        self.response = response
        self.command = command


class TransportError(OnboardingError):
    """Raised for timeouts and connection failures. Never retried."""
    pass


class AmbiguousMatchError(OnboardingError):
    """Raised when more than one remote account matches a row."""

    def __init__(self, message: str, candidate_ids: Optional[List[str]] = None):
        super().__init__(message, {"candidate_ids": candidate_ids or []})
        self.candidate_ids = candidate_ids or []


class AccountNotFoundError(OnboardingError):
    """Raised when an update or delete targets an account that does not exist."""
    pass


class DuplicateAccountError(OnboardingError):
    """Raised when a create row matches an existing account and duplicates are not allowed."""
    pass


class ContainerMissingError(OnboardingError):
    """Raised when a Safe does not exist and may not be created."""
    pass


class ContainerCreateError(OnboardingError):
    """Raised when the vault rejects a Safe creation."""
    pass


class RemoteWriteError(OnboardingError):
    """Raised when the vault rejects an account write."""
    pass


def format_error_message(error: Exception) -> str:
    """Format error message for user display."""
    if isinstance(error, OnboardingError):
        return str(error)
    else:
        return f"Unexpected error: {error}"
