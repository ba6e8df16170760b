"""Error taxonomy for the receipt tracker.

Every error carries a ``user_message`` that is safe to show in the UI; the
exception text itself may hold technical detail for the logs.
"""


class ReceiptTrackerError(Exception):
    """Base exception for the receipt tracker."""

    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, *, user_message: str | None = None):
        super().__init__(message or user_message or self.default_message)
        self.user_message = user_message or self.default_message


class ExtractionError(ReceiptTrackerError):
    """The extraction service failed or returned unusable data."""

    default_message = "Failed to analyze the receipt. Please try again."
    invalid_format_message = "Received an invalid format from the API."


class ValidationError(ReceiptTrackerError):
    """An extracted or manually entered record breaks a save rule."""

    default_message = "The transaction could not be validated."


class StorageReadError(ReceiptTrackerError):
    """The saved collection could not be loaded."""

    default_message = "Saved transactions could not be loaded."


class StorageWriteError(ReceiptTrackerError):
    """An append or delete against the store failed."""

    default_message = "Your change could not be saved. Please try again."


class AuthError(ReceiptTrackerError):
    """Sign-in with the identity provider failed."""

    default_message = "Sign-in failed. Please try again."


class ScanInProgressError(ReceiptTrackerError):
    """The same image is already being analyzed."""

    default_message = "This receipt is already being analyzed."
