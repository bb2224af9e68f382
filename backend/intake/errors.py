"""
Error types for the patient intake flow.

Recognition and submit failures are surfaced to the user as the session's
error message. Parse failures never leave the record browser.
"""


class IntakeError(Exception):
    """Base class for intake errors that carry a user-facing message."""

    default_message = "An unknown error occurred"

    def __init__(self, message: str = ""):
        self.message = message or self.default_message
        super().__init__(self.message)


class RecognitionFailure(IntakeError):
    """Document recognition failed (transport, decode, provider error or timeout)."""

    default_message = "Failed to process the document"


class SubmitFailure(IntakeError):
    """Persisting a patient form failed."""

    default_message = "Failed to submit form"


class RecordValidationError(SubmitFailure):
    """A record was rejected by the store's schema."""


class ParseFailure(IntakeError):
    """Stored structured text could not be parsed back."""

    default_message = "Malformed structured text"


class SessionStateError(IntakeError):
    """An operation was attempted in a form session state that does not allow it."""


class UnknownFieldError(SessionStateError):
    """An edit targeted a field that is not editable in the current session."""


class InvalidFieldValueError(IntakeError):
    """An edit tried to put a list or object into a scalar field."""
