"""Summary: Domain model dataclasses for Mailcast.

Importance: Defines the core entities shared across services, storage, and delivery.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class DispatchStatus(str, Enum):
    """Summary: States of a dispatch record.

    Importance: `submitted` and `failed` are terminal for an attempt; only a retry
    moves a record from `failed` back to `pending`.
    Alternatives: Store free-form status strings.
    """

    PENDING = "pending"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    FAILED = "failed"


class Visibility(str, Enum):
    """Audience a content item is published to."""

    PUBLIC = "public"
    MEMBERS = "members"
    PAID = "paid"


@dataclass(frozen=True)
class Recipient:
    """Summary: Represents a directory member who can receive dispatches.

    Importance: Source of email, name, and subscription state for every send.
    Alternatives: Keep recipients as plain email strings.
    """

    email: str
    name: str = ""
    subscribed: bool = True
    paid: bool = False


@dataclass(frozen=True)
class ContentItem:
    """Summary: Represents a post or newsletter issue to be emailed.

    Importance: Drives subject and body of a dispatch and decides its audience.
    Alternatives: Pass raw HTML and a subject line to the dispatcher.
    """

    title: str
    html: str
    plaintext: str = ""
    visibility: str = Visibility.PUBLIC.value


@dataclass
class EmailTemplate:
    """Summary: Rendered email ready for personalization.

    Importance: Shared between record snapshots, test sends, and delivery channels.
    Alternatives: Pass subject and bodies as loose arguments.
    """

    subject: str
    html: str
    plaintext: str
    from_address: str = ""
    support_address: str = ""

    def body(self, format: str) -> str:
        return getattr(self, format)

    def set_body(self, format: str, value: str) -> None:
        setattr(self, format, value)


@dataclass(frozen=True)
class Replacement:
    """Summary: One personalization token found in a template.

    Importance: Tells the dispatcher which text to swap and which recipient field feeds it.
    Alternatives: Substitute tokens directly during rendering.
    """

    id: str
    format: str
    source_field: str
    match: str
    fallback: str


@dataclass(frozen=True)
class BatchError:
    """Error reported by a delivery channel for a whole transport batch."""

    message: str
    code: str | None = None


SUCCESS = "success"
FAILURE = "failure"


@dataclass(frozen=True)
class BatchOutcome:
    """Summary: Result of one transport batch, either a success or a failure.

    Importance: Lets the dispatcher merge many batch results into one status by
    inspecting `kind` rather than result classes.
    Alternatives: Raise exceptions for failed batches and lose partial successes.
    """

    kind: str
    batch_index: int
    recipient_count: int
    data: dict[str, Any] = field(default_factory=dict)
    error: BatchError | None = None

    @staticmethod
    def success(
        batch_index: int, recipient_count: int, data: dict[str, Any] | None = None
    ) -> "BatchOutcome":
        return BatchOutcome(
            kind=SUCCESS,
            batch_index=batch_index,
            recipient_count=recipient_count,
            data=data or {},
        )

    @staticmethod
    def failure(
        batch_index: int,
        recipient_count: int,
        error: BatchError,
        data: dict[str, Any] | None = None,
    ) -> "BatchOutcome":
        return BatchOutcome(
            kind=FAILURE,
            batch_index=batch_index,
            recipient_count=recipient_count,
            data=data or {},
            error=error,
        )

    @property
    def is_success(self) -> bool:
        return self.kind == SUCCESS

    def to_dict(self) -> dict[str, Any]:
        """Summary: Serialize the outcome for storage on the dispatch record.

        Importance: Keeps `meta` and `error_detail` inspectable after the send.
        Alternatives: Store only counts of successes and failures.
        """

        payload: dict[str, Any] = {
            "kind": self.kind,
            "batch_index": self.batch_index,
            "recipient_count": self.recipient_count,
            "data": self.data,
        }
        if self.error is not None:
            payload["error"] = {"message": self.error.message, "code": self.error.code}
        return payload
