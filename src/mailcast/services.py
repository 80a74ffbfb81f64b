"""Summary: Core application services for Mailcast.

Importance: Orchestrates record creation, recipient snapshots, bulk sends, and unsubscribes.
Alternatives: Build a full service layer with dependency injection framework.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
import urllib.parse
import uuid
from datetime import datetime
from typing import Any, Mapping

from mailcast.composer import ContentComposer, apply_replacements, recipient_value
from mailcast.delivery import DeliveryChannel, chunked
from mailcast.directory import RecipientDirectory, RecipientFilter, eligible_filter
from mailcast.errors import (
    InternalError,
    NotFoundError,
    RecipientLimitError,
    ValidationError,
)
from mailcast.events import EventContext
from mailcast.models import BatchOutcome, ContentItem, DispatchStatus, Replacement, Visibility
from mailcast.records import DispatchRecords
from mailcast.storage.sqlite_store import (
    SqliteStore,
    StoredBatch,
    StoredContent,
    StoredDispatch,
    StoredRecipient,
    StoredSnapshotEntry,
)


logger = logging.getLogger(__name__)

UNSUBSCRIBE_NOT_FOUND = "Unsubscribe failed! Could not find member"


@dataclass(frozen=True)
class RecipientSnapshotStore:
    """Summary: Persists who a dispatch attempt targeted, in fixed-size batches.

    Importance: The snapshot is written before any send, so history survives crashes and
    later recipient edits.
    Alternatives: Record recipients only after the transport accepts them.
    """

    store: SqliteStore
    chunk_size: int = 1000

    def write(self, dispatch_id: int, recipients: list[StoredRecipient]) -> list[int]:
        """Summary: Store one batch and its entries per chunk of recipients.

        Importance: All chunks commit together; a retry writes a fresh set beside old ones.
        Alternatives: Update one shared recipient list per dispatch.
        """

        started = time.time()
        created_at = datetime.utcnow().isoformat()
        batch_ids: list[int] = []
        with self.store.transaction() as connection:
            for chunk in chunked(recipients, self.chunk_size):
                batch_id = self.store.create_batch(dispatch_id, created_at, connection=connection)
                entries = [
                    StoredSnapshotEntry(
                        id=uuid.uuid4().hex,
                        dispatch_id=dispatch_id,
                        batch_id=batch_id,
                        recipient_id=recipient.id,
                        recipient_uuid=recipient.uuid,
                        recipient_email=recipient.email,
                        recipient_name=recipient.name,
                    )
                    for recipient in chunk
                ]
                self.store.insert_snapshot_entries(entries, connection=connection)
                batch_ids.append(batch_id)
        logger.debug(
            "Stored %s recipients for dispatch %s in %s batches (%sms).",
            len(recipients),
            dispatch_id,
            len(batch_ids),
            int((time.time() - started) * 1000),
        )
        return batch_ids

    def batches(self, dispatch_id: int) -> list[StoredBatch]:
        return self.store.list_batches(dispatch_id)

    def entries(self, dispatch_id: int, batch_id: int | None = None) -> list[StoredSnapshotEntry]:
        return self.store.list_snapshot_entries(dispatch_id, batch_id=batch_id)


@dataclass(frozen=True)
class DispatchRecordManager:
    """Summary: Creates at most one dispatch record per content item and re-arms retries.

    Importance: Publishing the same content twice must never email the audience twice.
    Alternatives: Rely on callers to check for existing records.
    """

    store: SqliteStore
    directory: RecipientDirectory
    composer: ContentComposer
    records: DispatchRecords

    def create_for_content(
        self, content: StoredContent, context: EventContext | None = None
    ) -> StoredDispatch | None:
        """Summary: Create a pending dispatch for content with a reachable audience.

        Importance: Count, existence check, and insert share one write transaction so
        concurrent publishes produce a single record.
        Alternatives: Insert optimistically and handle unique-constraint errors.
        """

        started = time.time()
        with self.store.transaction() as connection:
            page = self.directory.list(eligible_filter(content, limit=0), connection=connection)
            logger.debug(
                "Counted %s eligible recipients for content %s (%sms).",
                page.total,
                content.id,
                int((time.time() - started) * 1000),
            )
            if page.total == 0:
                logger.info("No eligible recipients for content %s; skipping dispatch.", content.id)
                return None
            existing = self.records.find_by_content(content.id, connection=connection)
            if existing is not None:
                return existing
            template, replacements = self.composer.serialize(content, is_preview=True)
            apply_replacements(template, replacements, lambda replacement: replacement.fallback)
            record = self.records.insert(content.id, page.total, template, connection=connection)
        if record is None:
            return self.records.find_by_content(content.id)
        logger.info(
            "Created dispatch %s for content %s (%s recipients).",
            record.id,
            content.id,
            record.recipient_count,
        )
        self.records.notify_added(record, context)
        return record

    def retry(self, record: StoredDispatch, context: EventContext | None = None) -> StoredDispatch:
        """Summary: Set a dispatch back to pending.

        Importance: The status change itself is what re-triggers sending.
        Alternatives: Enqueue the dispatcher directly from the caller.
        """

        updated = self.records.edit(record.id, {"status": DispatchStatus.PENDING.value}, context)
        if updated is None:
            raise NotFoundError(f"Dispatch {record.id} not found")
        logger.info("Dispatch %s re-armed from %s.", record.id, record.status)
        return updated

    def retry_failed(self, dispatch_id: int, context: EventContext | None = None) -> StoredDispatch:
        """Re-arm a dispatch, refusing records whose last attempt did not fail."""

        record = self.get(dispatch_id)
        if record.status != DispatchStatus.FAILED.value:
            raise ValidationError("Only failed dispatches can be retried")
        return self.retry(record, context)

    def get(self, dispatch_id: int) -> StoredDispatch:
        record = self.records.get(dispatch_id)
        if record is None:
            raise NotFoundError(f"Dispatch {dispatch_id} not found")
        return record


@dataclass(frozen=True)
class BatchDispatcher:
    """Summary: Runs one send attempt for a pending dispatch record.

    Importance: Turns many transport batch results into a single terminal status.
    Alternatives: Track and retry each batch independently.
    """

    store: SqliteStore
    directory: RecipientDirectory
    composer: ContentComposer
    channel: DeliveryChannel
    records: DispatchRecords
    snapshots: RecipientSnapshotStore
    error_max_length: int = 2000
    recipient_limit: int = 0

    def run_job(self, payload: dict[str, Any]) -> StoredDispatch | None:
        """Job-runner entry point; the payload carries the record."""

        return self.run(payload["record"])

    def run(self, record: StoredDispatch) -> StoredDispatch | None:
        """Summary: Snapshot recipients, send, and store the aggregated status.

        Importance: Send-time errors end in a `failed` record rather than propagating to
        the code that triggered the job.
        Alternatives: Let exceptions escape to the job runner.
        """

        current = self.records.get(record.id)
        if current is None or current.status != DispatchStatus.PENDING.value:
            logger.info("Dispatch %s is not pending; skipping run.", record.id)
            return None

        outcomes: list[BatchOutcome] = []
        error: str | None = None
        send_started: float | None = None
        held_status = DispatchStatus.PENDING
        try:
            self._check_recipient_limit()
            content = self.store.get_content(current.content_id)
            if content is None:
                raise NotFoundError(f"Content {current.content_id} not found")
            started = time.time()
            recipients = self.directory.list(eligible_filter(content)).items
            logger.debug(
                "Resolved %s recipients for dispatch %s (%sms).",
                len(recipients),
                current.id,
                int((time.time() - started) * 1000),
            )
            if not recipients:
                logger.info("Dispatch %s has no eligible recipients; leaving it pending.", current.id)
                return None

            claimed = self.records.edit(
                current.id,
                {"status": DispatchStatus.SUBMITTING.value},
                expected_status=DispatchStatus.PENDING,
            )
            if claimed is None:
                logger.info("Dispatch %s was claimed by another worker.", current.id)
                return None
            held_status = DispatchStatus.SUBMITTING

            self.snapshots.write(current.id, recipients)
            send_started = time.time()
            outcomes = self._send(content, recipients)
            logger.debug(
                "Sent dispatch %s (%sms).", current.id, int((time.time() - send_started) * 1000)
            )
        except Exception as exc:
            if send_started is not None:
                logger.debug(
                    "Send for dispatch %s failed after %sms.",
                    current.id,
                    int((time.time() - send_started) * 1000),
                )
            logger.exception("Dispatch %s failed.", current.id)
            error = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__

        return self._finish(current.id, outcomes, error, held_status)

    def send_test(self, content: StoredContent, emails: list[str]) -> list[BatchOutcome]:
        """Summary: Send a content item to a few addresses without touching dispatch records.

        Importance: Lets authors preview real delivery before publishing.
        Alternatives: Render a browser preview only.
        """

        if not emails:
            raise ValidationError("At least one email address is required")
        recipients = [
            self.directory.get(email=email)
            or StoredRecipient(
                id=0,
                uuid="",
                email=email,
                name="",
                subscribed=True,
                paid=False,
                created_at="",
            )
            for email in emails
        ]
        outcomes = self._send(content, recipients, subject_prefix="[Test] ")
        logger.info("Sent test email for content %s to %s addresses.", content.id, len(emails))
        return outcomes

    def _send(
        self,
        content: StoredContent,
        recipients: list[StoredRecipient],
        subject_prefix: str = "",
    ) -> list[BatchOutcome]:
        template, replacements = self.composer.serialize(content)
        template.subject = f"{subject_prefix}{template.subject}"
        apply_replacements(
            template, replacements, lambda replacement: self.channel.placeholder(replacement.id)
        )
        variables = {
            recipient.email: self._recipient_variables(recipient, replacements)
            for recipient in recipients
        }
        return self.channel.send(template, [recipient.email for recipient in recipients], variables)

    def _recipient_variables(
        self, recipient: StoredRecipient, replacements: list[Replacement]
    ) -> dict[str, str]:
        data = {
            "unique_id": recipient.uuid,
            "unsubscribe_url": self.composer.unsubscribe_url(recipient.uuid) if recipient.uuid else "",
        }
        for replacement in replacements:
            value = data.get(replacement.source_field) or recipient_value(
                recipient, replacement.source_field
            )
            data[replacement.id] = value or replacement.fallback or ""
        return data

    def _check_recipient_limit(self) -> None:
        if self.recipient_limit <= 0:
            return
        total = self.directory.list(RecipientFilter(subscribed=True, limit=0)).total
        if total > self.recipient_limit:
            raise RecipientLimitError(
                f"Recipient limit exceeded: {total} subscribed recipients, limit is "
                f"{self.recipient_limit}"
            )

    def _finish(
        self,
        dispatch_id: int,
        outcomes: list[BatchOutcome],
        error: str | None,
        held_status: DispatchStatus,
    ) -> StoredDispatch | None:
        successes = [outcome for outcome in outcomes if outcome.is_success]
        failures = [outcome for outcome in outcomes if not outcome.is_success]
        status = DispatchStatus.SUBMITTED if successes else DispatchStatus.FAILED

        if not error and failures:
            first = failures[0].error
            error = first.message if first is not None else "Batch failed"
        if error and len(error) > self.error_max_length:
            error = error[: self.error_max_length]

        try:
            # Partial success still counts as submitted; failures stay in error_detail.
            updated = self.records.edit(
                dispatch_id,
                {
                    "status": status.value,
                    "meta": [outcome.to_dict() for outcome in successes],
                    "error": error,
                    "error_detail": [outcome.to_dict() for outcome in failures],
                },
                expected_status=held_status,
            )
        except Exception:
            logger.exception("Could not store final status for dispatch %s.", dispatch_id)
            return None
        if updated is None:
            logger.info(
                "Dispatch %s left %s by another worker; not recording this attempt.",
                dispatch_id,
                held_status.value,
            )
            return None
        logger.info(
            "Dispatch %s finished as %s (%s batches ok, %s failed).",
            dispatch_id,
            status.value,
            len(successes),
            len(failures),
        )
        return updated


@dataclass(frozen=True)
class ContentService:
    """Summary: Creates and publishes content items.

    Importance: Publishing is the moment a dispatch record is created.
    Alternatives: Create dispatch records from a separate admin action.
    """

    store: SqliteStore
    manager: DispatchRecordManager

    def create(self, content: ContentItem) -> StoredContent:
        if content.visibility not in {visibility.value for visibility in Visibility}:
            raise ValidationError(f"Unknown visibility: {content.visibility}")
        if not content.title.strip():
            raise ValidationError("Content title is required")
        content_id = self.store.save_content(content, created_at=datetime.utcnow().isoformat())
        logger.info("Created content %s.", content_id)
        return self.get(content_id)

    def get(self, content_id: int) -> StoredContent:
        content = self.store.get_content(content_id)
        if content is None:
            raise NotFoundError(f"Content {content_id} not found")
        return content

    def publish(
        self, content_id: int, context: EventContext | None = None
    ) -> StoredDispatch | None:
        """Summary: Mark content published and create its dispatch record.

        Importance: Re-publishing returns the existing record instead of sending again.
        Alternatives: Refuse to publish content twice.
        """

        content = self.get(content_id)
        if content.status != "published":
            self.store.mark_content_published(content_id, datetime.utcnow().isoformat())
            content = self.get(content_id)
            logger.info("Published content %s.", content_id)
        return self.manager.create_for_content(content, context)


@dataclass(frozen=True)
class UnsubscribeService:
    """Summary: Turns off a recipient's subscription from an unsubscribe link.

    Importance: Honors opt-outs without requiring the recipient to sign in.
    Alternatives: Send recipients to a preferences page.
    """

    directory: RecipientDirectory

    def handle(self, query: Mapping[str, str] | None) -> dict[str, Any]:
        """Summary: Unsubscribe the recipient named by the `uuid` query parameter.

        Importance: Not-found and update failures surface as distinct errors.
        Alternatives: Return a boolean and hide the reason.
        """

        if query is None:
            raise ValidationError(UNSUBSCRIBE_NOT_FOUND)
        recipient_uuid = query.get("uuid")
        if not recipient_uuid:
            if query.get("preview"):
                raise ValidationError("Unsubscribe preview")
            raise NotFoundError(UNSUBSCRIBE_NOT_FOUND)
        recipient = self.directory.get(uuid=recipient_uuid)
        if recipient is None:
            raise NotFoundError(UNSUBSCRIBE_NOT_FOUND)
        try:
            updated = self.directory.update({"subscribed": False}, id=recipient.id)
        except Exception as exc:
            logger.exception("Failed to unsubscribe recipient %s.", recipient.id)
            raise InternalError("Failed to unsubscribe member") from exc
        logger.info("Unsubscribed recipient %s.", recipient.id)
        return updated.to_dict()

    def handle_url(self, url: str | None) -> dict[str, Any]:
        """Parse an unsubscribe link and unsubscribe its recipient."""

        if not url:
            raise ValidationError(UNSUBSCRIBE_NOT_FOUND)
        parsed = urllib.parse.parse_qs(urllib.parse.urlsplit(url).query)
        return self.handle({key: values[0] for key, values in parsed.items() if values})
