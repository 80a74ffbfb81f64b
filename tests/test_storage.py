"""Summary: Tests for the SQLite storage layer.

Importance: Ensures dispatch records, batches, and recipients persist as expected.
Alternatives: Rely on manual testing for storage operations.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from mailcast.models import ContentItem, Recipient
from mailcast.storage.sqlite_store import SqliteStore, StoredSnapshotEntry


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    return store


def _insert_dispatch(store: SqliteStore, content_id: int, connection=None):
    return store.insert_dispatch(
        content_id=content_id,
        status="pending",
        recipient_count=3,
        subject="Hello",
        html="<p>Hello</p>",
        plaintext="Hello",
        submitted_at=datetime.utcnow().isoformat(),
        connection=connection,
    )


def test_store_allows_one_dispatch_per_content(tmp_path: Path) -> None:
    """Summary: Verify the unique content constraint on dispatch records.

    Importance: Backs the one-record-per-content guarantee at the storage layer.
    Alternatives: Check existence only in application code.
    """

    store = _store(tmp_path)
    content_id = store.save_content(ContentItem(title="Post", html="<p>Hi</p>"), "now")
    first = _insert_dispatch(store, content_id)
    second = _insert_dispatch(store, content_id)
    assert first is not None
    assert first.status == "pending"
    assert first.error_detail == []
    assert second is None
    assert store.get_dispatch_by_content(content_id).id == first.id


def test_store_conditional_update(tmp_path: Path) -> None:
    """Summary: Verify compare-and-set updates on dispatch status.

    Importance: Only one worker may move a record out of pending.
    Alternatives: Lock rows for the duration of a send.
    """

    store = _store(tmp_path)
    record = _insert_dispatch(store, 1)
    claimed = store.update_dispatch(record.id, {"status": "submitting"}, expected_status="pending")
    again = store.update_dispatch(record.id, {"status": "submitting"}, expected_status="pending")
    assert claimed is not None
    assert claimed.status == "submitting"
    assert again is None


def test_store_serializes_outcome_lists(tmp_path: Path) -> None:
    store = _store(tmp_path)
    record = _insert_dispatch(store, 1)
    detail = [{"kind": "failure", "batch_index": 0, "error": {"message": "boom", "code": None}}]
    updated = store.update_dispatch(record.id, {"status": "failed", "error_detail": detail})
    assert updated.error_detail == detail
    assert store.get_dispatch(record.id).error_detail == detail


def test_store_rejects_unknown_dispatch_fields(tmp_path: Path) -> None:
    store = _store(tmp_path)
    record = _insert_dispatch(store, 1)
    with pytest.raises(ValueError):
        store.update_dispatch(record.id, {"content_id": 2})


def test_store_transaction_rolls_back(tmp_path: Path) -> None:
    """Summary: Verify writes inside a failed transaction are discarded.

    Importance: Record creation must leave nothing behind when it fails.
    Alternatives: Clean up partial rows manually.
    """

    store = _store(tmp_path)
    with pytest.raises(RuntimeError):
        with store.transaction() as connection:
            _insert_dispatch(store, 7, connection=connection)
            raise RuntimeError("abort")
    assert store.get_dispatch_by_content(7) is None


def test_store_recipient_filters(tmp_path: Path) -> None:
    store = _store(tmp_path)
    first = store.add_recipient(Recipient(email="a@example.com"), uuid="u-a", created_at="now")
    store.add_recipient(Recipient(email="b@example.com", paid=True), uuid="u-b", created_at="now")
    store.add_recipient(
        Recipient(email="c@example.com", subscribed=False), uuid="u-c", created_at="now"
    )
    duplicate = store.add_recipient(Recipient(email="a@example.com"), uuid="u-d", created_at="now")
    assert duplicate == first
    assert store.count_recipients() == 3
    assert store.count_recipients(subscribed=True) == 2
    assert store.count_recipients(subscribed=True, paid=True) == 1
    emails = [item.email for item in store.list_recipients(subscribed=True, limit=1)]
    assert emails == ["a@example.com"]
    assert store.get_recipient(uuid="u-b").paid is True


def test_store_batches_and_snapshot_entries(tmp_path: Path) -> None:
    """Summary: Verify batches report the number of snapshot entries they hold.

    Importance: Batch listings are the audit trail of each send attempt.
    Alternatives: Store recipient counts directly on batches.
    """

    store = _store(tmp_path)
    record = _insert_dispatch(store, 1)
    batch_id = store.create_batch(record.id, "now")
    empty_batch = store.create_batch(record.id, "now")
    store.insert_snapshot_entries(
        [
            StoredSnapshotEntry(
                id=f"entry-{index}",
                dispatch_id=record.id,
                batch_id=batch_id,
                recipient_id=index,
                recipient_uuid=f"uuid-{index}",
                recipient_email=f"user{index}@example.com",
                recipient_name="",
            )
            for index in range(3)
        ]
    )
    batches = store.list_batches(record.id)
    assert [(batch.id, batch.recipient_count) for batch in batches] == [
        (batch_id, 3),
        (empty_batch, 0),
    ]
    entries = store.list_snapshot_entries(record.id, batch_id=batch_id)
    assert [entry.recipient_email for entry in entries][0] == "user0@example.com"
