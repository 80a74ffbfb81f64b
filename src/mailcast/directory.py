"""Summary: Recipient directory backed by the SQLite store.

Importance: Lists, looks up, and updates the members a dispatch can reach.
Alternatives: Query a hosted CRM or newsletter audience API.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime

from email_validator import EmailNotValidError, validate_email

from mailcast.errors import InternalError, ValidationError
from mailcast.models import Recipient, Visibility
from mailcast.storage.sqlite_store import SqliteStore, StoredContent, StoredRecipient


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecipientFilter:
    """Summary: Filter options for listing recipients.

    Importance: Carries the subscription and tier rule plus the locking mode so counts
    and later resolution agree under concurrent writers.
    Alternatives: Accept a free-form filter expression.
    """

    subscribed: bool | None = None
    paid: bool | None = None
    limit: int | None = None
    for_update: bool = False


@dataclass(frozen=True)
class RecipientPage:
    """Recipients returned by a listing together with the total match count."""

    items: list[StoredRecipient]
    total: int


def eligible_filter(content: StoredContent, **options: object) -> RecipientFilter:
    """Summary: Build the audience filter for a content item.

    Importance: Subscribed recipients always; paid ones only for paid content.
    Alternatives: Store a per-content audience definition.
    """

    paid = True if content.visibility == Visibility.PAID.value else None
    return RecipientFilter(subscribed=True, paid=paid, **options)


@dataclass(frozen=True)
class RecipientDirectory:
    """Summary: Manages recipients eligible for dispatches.

    Importance: Single access point the dispatch pipeline uses to resolve its audience.
    Alternatives: Let services query the store directly.
    """

    store: SqliteStore

    def add(self, recipient: Recipient) -> StoredRecipient:
        """Summary: Validate and store a recipient.

        Importance: Rejects undeliverable addresses before they reach a dispatch.
        Alternatives: Validate addresses only at send time.
        """

        try:
            normalized = validate_email(recipient.email, check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise ValidationError(f"Invalid email address {recipient.email!r}: {exc}") from exc
        recipient_id = self.store.add_recipient(
            Recipient(
                email=normalized,
                name=recipient.name,
                subscribed=recipient.subscribed,
                paid=recipient.paid,
            ),
            uuid=str(uuid.uuid4()),
            created_at=datetime.utcnow().isoformat(),
        )
        logger.info("Stored recipient %s.", recipient_id)
        stored = self.store.get_recipient(recipient_id=recipient_id)
        if stored is None:
            raise InternalError(f"Recipient {recipient_id} could not be read back")
        return stored

    def list(
        self,
        options: RecipientFilter,
        connection: sqlite3.Connection | None = None,
    ) -> RecipientPage:
        """Summary: List recipients matching a filter with the total count.

        Importance: The total drives record creation, the items drive the send.
        Alternatives: Return only items and count them in the caller.
        """

        if options.for_update and connection is None:
            with self.store.transaction() as held:
                return self.list(options, connection=held)
        total = self.store.count_recipients(
            subscribed=options.subscribed,
            paid=options.paid,
            connection=connection,
            for_update=options.for_update,
        )
        if options.limit == 0:
            return RecipientPage(items=[], total=total)
        items = self.store.list_recipients(
            subscribed=options.subscribed,
            paid=options.paid,
            limit=options.limit,
            connection=connection,
            for_update=options.for_update,
        )
        return RecipientPage(items=items, total=total)

    def get(
        self,
        id: int | None = None,
        uuid: str | None = None,
        email: str | None = None,
    ) -> StoredRecipient | None:
        return self.store.get_recipient(recipient_id=id, uuid=uuid, email=email)

    def update(self, fields: dict[str, object], id: int) -> StoredRecipient:
        """Summary: Update a recipient and return the new representation.

        Importance: Backs unsubscribe and tier changes.
        Alternatives: Expose per-field setter methods.
        """

        updated = self.store.update_recipient(id, dict(fields))
        if updated is None:
            raise LookupError(f"Recipient {id} disappeared during update")
        logger.info("Updated recipient %s (%s).", id, ", ".join(sorted(fields)))
        return updated
