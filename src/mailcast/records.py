"""Summary: Dispatch record persistence with change events.

Importance: Every write to a dispatch record announces itself so listeners can react.
Alternatives: Have the dispatcher call the listener directly after each write.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from mailcast.errors import NotFoundError
from mailcast.events import DISPATCH_ADDED, DISPATCH_EDITED, DispatchEvent, EventBus, EventContext
from mailcast.models import DispatchStatus, EmailTemplate
from mailcast.storage.sqlite_store import SqliteStore, StoredDispatch


@dataclass(frozen=True)
class DispatchRecords:
    """Summary: Reads and writes dispatch records and emits their events.

    Importance: Keeps the event contract in one place for the manager and the dispatcher.
    Alternatives: Emit events from the storage layer.
    """

    store: SqliteStore
    events: EventBus

    def get(self, dispatch_id: int) -> StoredDispatch | None:
        return self.store.get_dispatch(dispatch_id)

    def find_by_content(
        self, content_id: int, connection: sqlite3.Connection | None = None
    ) -> StoredDispatch | None:
        return self.store.get_dispatch_by_content(content_id, connection=connection)

    def insert(
        self,
        content_id: int,
        recipient_count: int,
        template: EmailTemplate,
        connection: sqlite3.Connection | None = None,
    ) -> StoredDispatch | None:
        """Summary: Insert a pending record without emitting events.

        Importance: Callers inside a transaction announce the record only after commit,
        so background jobs never see an uncommitted row.
        Alternatives: Emit immediately and let jobs retry on missing rows.
        """

        return self.store.insert_dispatch(
            content_id=content_id,
            status=DispatchStatus.PENDING.value,
            recipient_count=recipient_count,
            subject=template.subject,
            html=template.html,
            plaintext=template.plaintext,
            submitted_at=datetime.utcnow().isoformat(),
            connection=connection,
        )

    def notify_added(self, record: StoredDispatch, context: EventContext | None = None) -> None:
        self.events.emit(DISPATCH_ADDED, DispatchEvent(record=record, context=context or EventContext()))

    def edit(
        self,
        dispatch_id: int,
        fields: dict[str, Any],
        context: EventContext | None = None,
        expected_status: DispatchStatus | None = None,
    ) -> StoredDispatch | None:
        """Summary: Update a record and emit `dispatch.edited` with its previous state.

        Importance: With `expected_status` the write only applies from that status and
        returns None otherwise, which serializes competing workers.
        Alternatives: Lock the row for the duration of a send.
        """

        previous = self.store.get_dispatch(dispatch_id)
        if previous is None:
            raise NotFoundError(f"Dispatch {dispatch_id} not found")
        values = {**fields, "updated_at": datetime.utcnow().isoformat()}
        expected = expected_status.value if expected_status is not None else None
        updated = self.store.update_dispatch(dispatch_id, values, expected_status=expected)
        if updated is None:
            return None
        if expected is not None:
            previous = replace(previous, status=expected)
        self.events.emit(
            DISPATCH_EDITED,
            DispatchEvent(record=updated, previous=previous, context=context or EventContext()),
        )
        return updated
