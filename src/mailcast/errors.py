"""Summary: Error types raised by Mailcast services.

Importance: Lets the API and CLI layers tell missing data apart from bad input and failures.
Alternatives: Raise built-in exceptions and inspect messages at the boundary.
"""

from __future__ import annotations


class MailcastError(Exception):
    """Summary: Base class for all Mailcast errors.

    Importance: Allows callers to catch every domain failure in one place.
    Alternatives: Let each module define unrelated exception classes.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(MailcastError):
    """No recipient, content item, or dispatch matches the given criteria."""


class ValidationError(MailcastError):
    """A request or input value is malformed."""


class RecipientLimitError(ValidationError):
    """The subscribed audience exceeds the configured recipient limit."""


class TransportError(MailcastError):
    """A delivery channel failed to hand a batch to the transport."""


class InternalError(MailcastError):
    """An unexpected directory or storage failure."""
