"""Summary: SQLite storage implementation for Mailcast.

Importance: Provides durable dispatch records, recipient snapshots, and the member directory.
Alternatives: Use PostgreSQL with row-level locks for large deployments.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from mailcast.models import ContentItem, Recipient


@dataclass(frozen=True)
class StoredRecipient:
    """Summary: Recipient record with database identifier.

    Importance: Carries the stable uuid used by unsubscribe links.
    Alternatives: Use the email address as the only identifier.
    """

    id: int
    uuid: str
    email: str
    name: str
    subscribed: bool
    paid: bool
    created_at: str

    @property
    def first_name(self) -> str:
        return (self.name or "").split(" ")[0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "uuid": self.uuid,
            "email": self.email,
            "name": self.name,
            "subscribed": self.subscribed,
            "paid": self.paid,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class StoredContent:
    """Summary: Content item record with database identifier.

    Importance: Dispatch records reference content by this id.
    Alternatives: Embed content directly in each dispatch.
    """

    id: int
    title: str
    html: str
    plaintext: str
    visibility: str
    status: str
    published_at: str | None


@dataclass(frozen=True)
class StoredDispatch:
    """Summary: Dispatch record with database identifier.

    Importance: Single durable unit tracking one bulk send for a content item.
    Alternatives: Track status only on individual batches.
    """

    id: int
    content_id: int
    status: str
    recipient_count: int
    subject: str
    html: str
    plaintext: str
    submitted_at: str | None
    error: str | None
    error_detail: list[dict[str, Any]] = field(default_factory=list)
    meta: list[dict[str, Any]] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content_id": self.content_id,
            "status": self.status,
            "recipient_count": self.recipient_count,
            "subject": self.subject,
            "submitted_at": self.submitted_at,
            "error": self.error,
            "error_detail": self.error_detail,
            "meta": self.meta,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class StoredBatch:
    """Recipient batch record with the number of snapshot entries it holds."""

    id: int
    dispatch_id: int
    created_at: str
    recipient_count: int


@dataclass(frozen=True)
class StoredSnapshotEntry:
    """Summary: Snapshot of one recipient at send time.

    Importance: Preserves who was targeted even if the recipient later changes.
    Alternatives: Join against the live recipients table.
    """

    id: str
    dispatch_id: int
    batch_id: int
    recipient_id: int
    recipient_uuid: str
    recipient_email: str
    recipient_name: str


DISPATCH_COLUMNS = (
    "id, content_id, status, recipient_count, subject, html, plaintext, submitted_at, "
    "error, error_detail, meta, created_at, updated_at"
)
DISPATCH_FIELDS = {
    "status",
    "recipient_count",
    "subject",
    "html",
    "plaintext",
    "submitted_at",
    "error",
    "error_detail",
    "meta",
    "updated_at",
}
RECIPIENT_COLUMNS = "id, uuid, email, name, subscribed, paid, created_at"
RECIPIENT_FIELDS = {"email", "name", "subscribed", "paid"}
JSON_FIELDS = {"error_detail", "meta"}


class SqliteStore:
    """Summary: SQLite-backed storage for Mailcast.

    Importance: One file holds the directory, content, dispatches, and their snapshots.
    Alternatives: Split snapshots into a separate append-only store.
    """

    def __init__(self, db_path: str, timeout: float = 30.0) -> None:
        """`timeout` is how long a writer waits for the database lock."""

        self._db_path = Path(db_path)
        self._timeout = timeout

    def initialize(self) -> None:
        """Summary: Create the Mailcast tables when missing.

        Importance: The UNIQUE content_id column is what makes record creation idempotent.
        Alternatives: Ship versioned migration scripts.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS recipients (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    uuid TEXT NOT NULL UNIQUE,
                    email TEXT NOT NULL UNIQUE,
                    name TEXT,
                    subscribed INTEGER NOT NULL DEFAULT 1,
                    paid INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS content_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    html TEXT NOT NULL,
                    plaintext TEXT,
                    visibility TEXT NOT NULL,
                    status TEXT NOT NULL,
                    published_at TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS dispatches (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    content_id INTEGER NOT NULL UNIQUE,
                    status TEXT NOT NULL,
                    recipient_count INTEGER NOT NULL,
                    subject TEXT,
                    html TEXT,
                    plaintext TEXT,
                    submitted_at TEXT,
                    error TEXT,
                    error_detail TEXT,
                    meta TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS dispatch_batches (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    dispatch_id INTEGER NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS dispatch_recipients (
                    id TEXT PRIMARY KEY,
                    dispatch_id INTEGER NOT NULL,
                    batch_id INTEGER NOT NULL,
                    recipient_id INTEGER NOT NULL,
                    recipient_uuid TEXT NOT NULL,
                    recipient_email TEXT NOT NULL,
                    recipient_name TEXT
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_dispatch_recipients_batch "
                "ON dispatch_recipients (batch_id)"
            )
            connection.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Summary: Open a write transaction that holds the database lock until commit.

        Importance: Makes counts, existence checks, and inserts consistent under
        concurrent writers.
        Alternatives: Rely on unique constraints alone and retry on conflicts.
        """

        connection = sqlite3.connect(self._db_path, timeout=self._timeout, isolation_level=None)
        try:
            connection.execute("BEGIN IMMEDIATE")
            try:
                yield connection
            except BaseException:
                connection.execute("ROLLBACK")
                raise
            connection.execute("COMMIT")
        finally:
            connection.close()

    def add_recipient(self, recipient: Recipient, uuid: str, created_at: str) -> int:
        """Summary: Insert a recipient or return the id of the existing email.

        Importance: Keeps the directory free of duplicate addresses.
        Alternatives: Raise on duplicates and let callers decide.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT OR IGNORE INTO recipients (uuid, email, name, subscribed, paid, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    uuid,
                    recipient.email,
                    recipient.name,
                    int(recipient.subscribed),
                    int(recipient.paid),
                    created_at,
                ),
            )
            if cursor.rowcount:
                recipient_id = cursor.lastrowid
            else:
                cursor.execute("SELECT id FROM recipients WHERE email = ?", (recipient.email,))
                row = cursor.fetchone()
                recipient_id = int(row[0]) if row else 0
            connection.commit()
        return int(recipient_id)

    def get_recipient(
        self,
        recipient_id: int | None = None,
        uuid: str | None = None,
        email: str | None = None,
    ) -> StoredRecipient | None:
        """Summary: Fetch one recipient by id, uuid, or email.

        Importance: Resolves unsubscribe links and test-send addresses.
        Alternatives: Expose separate lookup methods per key.
        """

        conditions, params = [], []
        for column, value in (("id", recipient_id), ("uuid", uuid), ("email", email)):
            if value is not None:
                conditions.append(f"{column} = ?")
                params.append(value)
        if not conditions:
            return None
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT {RECIPIENT_COLUMNS} FROM recipients WHERE {' AND '.join(conditions)}",
                params,
            )
            row = cursor.fetchone()
        return _recipient_from_row(row) if row else None

    def list_recipients(
        self,
        subscribed: bool | None = None,
        paid: bool | None = None,
        limit: int | None = None,
        connection: sqlite3.Connection | None = None,
        for_update: bool = False,
    ) -> list[StoredRecipient]:
        """Summary: List recipients matching subscription and tier flags.

        Importance: Resolves the audience of a dispatch.
        Alternatives: Page through recipients with a cursor.
        """

        where, params = _recipient_filter(subscribed, paid)
        query = f"SELECT {RECIPIENT_COLUMNS} FROM recipients {where} ORDER BY id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._reader(connection, for_update) as active:
            rows = active.execute(query, params).fetchall()
        return [_recipient_from_row(row) for row in rows]

    def count_recipients(
        self,
        subscribed: bool | None = None,
        paid: bool | None = None,
        connection: sqlite3.Connection | None = None,
        for_update: bool = False,
    ) -> int:
        """Count recipients matching subscription and tier flags."""

        where, params = _recipient_filter(subscribed, paid)
        with self._reader(connection, for_update) as active:
            row = active.execute(f"SELECT COUNT(*) FROM recipients {where}", params).fetchone()
        return int(row[0])

    def update_recipient(self, recipient_id: int, fields: dict[str, Any]) -> StoredRecipient | None:
        """Summary: Update recipient columns and return the fresh record.

        Importance: Backs unsubscribe and tier changes.
        Alternatives: Replace the whole row on every change.
        """

        unknown = set(fields) - RECIPIENT_FIELDS
        if unknown:
            raise ValueError(f"Unknown recipient fields: {sorted(unknown)}")
        if fields:
            assignments = ", ".join(f"{column} = ?" for column in fields)
            params = [_to_column(value) for value in fields.values()]
            with self._connection() as connection:
                connection.execute(
                    f"UPDATE recipients SET {assignments} WHERE id = ?",
                    [*params, recipient_id],
                )
                connection.commit()
        return self.get_recipient(recipient_id=recipient_id)

    def save_content(self, content: ContentItem, created_at: str) -> int:
        """Persist a draft content item and return its id."""

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO content_items (title, html, plaintext, visibility, status, created_at)
                VALUES (?, ?, ?, ?, 'draft', ?)
                """,
                (content.title, content.html, content.plaintext, content.visibility, created_at),
            )
            content_id = cursor.lastrowid
            connection.commit()
        return int(content_id)

    def get_content(self, content_id: int) -> StoredContent | None:
        with self._connection() as connection:
            row = connection.execute(
                """
                SELECT id, title, html, plaintext, visibility, status, published_at
                FROM content_items WHERE id = ?
                """,
                (content_id,),
            ).fetchone()
        if not row:
            return None
        return StoredContent(
            id=row[0],
            title=row[1],
            html=row[2],
            plaintext=row[3] or "",
            visibility=row[4],
            status=row[5],
            published_at=row[6],
        )

    def mark_content_published(self, content_id: int, published_at: str) -> None:
        with self._connection() as connection:
            connection.execute(
                "UPDATE content_items SET status = 'published', published_at = ? WHERE id = ?",
                (published_at, content_id),
            )
            connection.commit()

    def insert_dispatch(
        self,
        content_id: int,
        status: str,
        recipient_count: int,
        subject: str,
        html: str,
        plaintext: str,
        submitted_at: str,
        connection: sqlite3.Connection | None = None,
    ) -> StoredDispatch | None:
        """Summary: Insert a dispatch record unless one exists for the content item.

        Importance: The unique constraint on content_id backs the one-record-per-content rule.
        Alternatives: Check existence in application code only.
        """

        with self._session(connection) as active:
            cursor = active.execute(
                """
                INSERT INTO dispatches (
                    content_id, status, recipient_count, subject, html, plaintext,
                    submitted_at, error_detail, meta, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, '[]', '[]', ?, ?)
                ON CONFLICT(content_id) DO NOTHING
                """,
                (
                    content_id,
                    status,
                    recipient_count,
                    subject,
                    html,
                    plaintext,
                    submitted_at,
                    submitted_at,
                    submitted_at,
                ),
            )
            if not cursor.rowcount:
                return None
            dispatch_id = cursor.lastrowid
        return self.get_dispatch(int(dispatch_id), connection=connection)

    def get_dispatch(
        self, dispatch_id: int, connection: sqlite3.Connection | None = None
    ) -> StoredDispatch | None:
        with self._session(connection) as active:
            row = active.execute(
                f"SELECT {DISPATCH_COLUMNS} FROM dispatches WHERE id = ?", (dispatch_id,)
            ).fetchone()
        return _dispatch_from_row(row) if row else None

    def get_dispatch_by_content(
        self, content_id: int, connection: sqlite3.Connection | None = None
    ) -> StoredDispatch | None:
        with self._session(connection) as active:
            row = active.execute(
                f"SELECT {DISPATCH_COLUMNS} FROM dispatches WHERE content_id = ?", (content_id,)
            ).fetchone()
        return _dispatch_from_row(row) if row else None

    def update_dispatch(
        self,
        dispatch_id: int,
        fields: dict[str, Any],
        expected_status: str | None = None,
    ) -> StoredDispatch | None:
        """Summary: Update dispatch columns, optionally only from an expected status.

        Importance: The conditional form is an atomic compare-and-set so only one worker
        can move a record out of `pending`.
        Alternatives: Use row locks held across the whole send.
        """

        unknown = set(fields) - DISPATCH_FIELDS
        if unknown:
            raise ValueError(f"Unknown dispatch fields: {sorted(unknown)}")
        assignments = ", ".join(f"{column} = ?" for column in fields)
        params = [
            json.dumps(value) if column in JSON_FIELDS else _to_column(value)
            for column, value in fields.items()
        ]
        query = f"UPDATE dispatches SET {assignments} WHERE id = ?"
        params.append(dispatch_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        with self._connection() as connection:
            cursor = connection.execute(query, params)
            applied = cursor.rowcount
            connection.commit()
        if not applied:
            return None
        return self.get_dispatch(dispatch_id)

    def create_batch(
        self, dispatch_id: int, created_at: str, connection: sqlite3.Connection | None = None
    ) -> int:
        with self._session(connection) as active:
            cursor = active.execute(
                "INSERT INTO dispatch_batches (dispatch_id, created_at) VALUES (?, ?)",
                (dispatch_id, created_at),
            )
            batch_id = cursor.lastrowid
        return int(batch_id)

    def insert_snapshot_entries(
        self,
        entries: list[StoredSnapshotEntry],
        connection: sqlite3.Connection | None = None,
    ) -> int:
        """Summary: Bulk insert snapshot rows for one batch.

        Importance: Uses executemany to avoid building per-row objects for large audiences.
        Alternatives: Insert rows one at a time.
        """

        with self._session(connection) as active:
            active.executemany(
                """
                INSERT INTO dispatch_recipients (
                    id, dispatch_id, batch_id, recipient_id, recipient_uuid,
                    recipient_email, recipient_name
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        entry.id,
                        entry.dispatch_id,
                        entry.batch_id,
                        entry.recipient_id,
                        entry.recipient_uuid,
                        entry.recipient_email,
                        entry.recipient_name,
                    )
                    for entry in entries
                ],
            )
        return len(entries)

    def list_batches(self, dispatch_id: int) -> list[StoredBatch]:
        with self._connection() as connection:
            rows = connection.execute(
                """
                SELECT b.id, b.dispatch_id, b.created_at, COUNT(r.id)
                FROM dispatch_batches b
                LEFT JOIN dispatch_recipients r ON r.batch_id = b.id
                WHERE b.dispatch_id = ?
                GROUP BY b.id
                ORDER BY b.id
                """,
                (dispatch_id,),
            ).fetchall()
        return [
            StoredBatch(id=row[0], dispatch_id=row[1], created_at=row[2], recipient_count=row[3])
            for row in rows
        ]

    def list_snapshot_entries(
        self, dispatch_id: int, batch_id: int | None = None
    ) -> list[StoredSnapshotEntry]:
        query = (
            "SELECT id, dispatch_id, batch_id, recipient_id, recipient_uuid, recipient_email, "
            "recipient_name FROM dispatch_recipients WHERE dispatch_id = ?"
        )
        params: list[Any] = [dispatch_id]
        if batch_id is not None:
            query += " AND batch_id = ?"
            params.append(batch_id)
        query += " ORDER BY batch_id, rowid"
        with self._connection() as connection:
            rows = connection.execute(query, params).fetchall()
        return [
            StoredSnapshotEntry(
                id=row[0],
                dispatch_id=row[1],
                batch_id=row[2],
                recipient_id=row[3],
                recipient_uuid=row[4],
                recipient_email=row[5],
                recipient_name=row[6] or "",
            )
            for row in rows
        ]

    @contextmanager
    def _session(self, connection: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        """Summary: Reuse a caller transaction or open a short-lived connection.

        Importance: Lets the same method run inside or outside a unit of work.
        Alternatives: Duplicate every method with a transactional variant.
        """

        if connection is not None:
            yield connection
            return
        with self._connection() as active:
            yield active
            active.commit()

    @contextmanager
    def _reader(
        self, connection: sqlite3.Connection | None, for_update: bool
    ) -> Iterator[sqlite3.Connection]:
        # SQLite has no row locks; for_update takes the database write lock instead.
        if connection is None and for_update:
            with self.transaction() as active:
                yield active
            return
        with self._session(connection) as active:
            yield active

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Open a short-lived connection in the default deferred mode."""

        connection = sqlite3.connect(self._db_path, timeout=self._timeout)
        try:
            yield connection
        finally:
            connection.close()


def _recipient_filter(subscribed: bool | None, paid: bool | None) -> tuple[str, list[Any]]:
    conditions, params = [], []
    if subscribed is not None:
        conditions.append("subscribed = ?")
        params.append(int(subscribed))
    if paid is not None:
        conditions.append("paid = ?")
        params.append(int(paid))
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, params


def _recipient_from_row(row: tuple) -> StoredRecipient:
    return StoredRecipient(
        id=row[0],
        uuid=row[1],
        email=row[2],
        name=row[3] or "",
        subscribed=bool(row[4]),
        paid=bool(row[5]),
        created_at=row[6],
    )


def _dispatch_from_row(row: tuple) -> StoredDispatch:
    return StoredDispatch(
        id=row[0],
        content_id=row[1],
        status=row[2],
        recipient_count=row[3],
        subject=row[4] or "",
        html=row[5] or "",
        plaintext=row[6] or "",
        submitted_at=row[7],
        error=row[8],
        error_detail=json.loads(row[9]) if row[9] else [],
        meta=json.loads(row[10]) if row[10] else [],
        created_at=row[11],
        updated_at=row[12],
    )


def _to_column(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if hasattr(value, "value"):
        return value.value
    return value
