"""
Base error types for Environment integrations.

Every fallible network leg of the command pipeline (intent service,
executed backend endpoints) raises one of the exceptions below. Only the
CV command service catches them; UI code never sees a raw exception.

Error Taxonomy:
===============
- IntentServiceError: transport/HTTP failure talking to API0 (analyze/start)
- SessionInvalidError: API0 rejected the conversation id (recovered once)
- EndpointExecutionError: a resolved backend call returned non-2xx
- AuthKeysError: the Firebase signing keys cannot be fetched
- AuthRequiredError: an action needs a signed-in user and there is none
- AttachmentError: an uploaded file cannot be turned into an attachment
"""

from typing import Optional, Any


# ---------------------------------------------------------------------------
# CUSTOM EXCEPTIONS
# ---------------------------------------------------------------------------


class EnvironmentError(Exception):
    """Base exception for all environment-related errors."""
    pass


class APIError(EnvironmentError):
    """Raised when an API call to an external service fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class IntentServiceError(APIError):
    """
    Raised when the intent service (API0) cannot be reached or answers
    with a non-2xx status.

    The message is the best-effort reason extracted from the JSON error
    body, falling back to the HTTP status.
    """
    pass


class SessionInvalidError(IntentServiceError):
    """
    Raised when API0 no longer accepts the current conversation id
    (HTTP 403 or an error message mentioning the conversation).

    The client recovers from this once by starting a fresh session.
    """
    pass


class AuthKeysError(APIError):
    """Raised when Google's Firebase signing keys cannot be fetched."""
    pass


class EndpointExecutionError(APIError):
    """
    Raised when an executed endpoint answers with a non-2xx status.

    `response` holds the raw response text; it is not JSON-parsed.
    """
    pass


class AuthRequiredError(EnvironmentError):
    """Raised when an action needs a signed-in user but none exists."""
    pass


class AttachmentError(EnvironmentError):
    """Raised when an uploaded file is unsupported or too large."""
    pass
