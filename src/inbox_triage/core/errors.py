"""Custom exception types for Inbox Triage.

Error messages follow one shape:
- What failed (specific operation or component)
- Why it failed (the provider status, code or condition)
- How to fix it (actionable guidance, where there is any)
"""


class TriageError(Exception):
    """Base exception for all Inbox Triage errors."""

    pass


class ConfigLoadError(TriageError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class ConfigValidationError(TriageError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class AuthError(TriageError):
    """Raised when a credential or access token cannot be acquired.

    Fatal to the run: no partial output is produced.
    """

    pass


class TransportError(TriageError):
    """Raised when a mail provider call fails.

    Attributes:
        status_code: HTTP status code from the provider (if any)
        error_code: Provider error code, e.g. Graph "ErrorItemNotFound" or
            the EWS ResponseCode (if available)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class PartialMutationWarning(TriageError):
    """A single mark-as-read update failed on the best-effort REST path.

    Never raised by the triage engine. Instances are built from
    MarkResult.failed so callers can report "N of M marked".

    Attributes:
        message_id: The provider id of the message that was not updated
    """

    def __init__(self, message: str, message_id: str):
        super().__init__(message)
        self.message_id = message_id
