"""Async SQLite store for per-invoice storage status records.

Wraps aiosqlite to provide async CRUD and query-by-status over the
``storage_status`` table, plus an append-only ``storage_activity`` audit
log.

Rows keep the tabular layout shared with the rest of the business data:
nine ordered TEXT cells (see :data:`COLUMNS`).  Optional fields are stored
as empty strings and decode back to ``None``; timestamps are ISO-8601.

Each write method commits immediately -- no transactions are held across
``await`` boundaries.  Concurrent writers are last-write-wins at the row
level.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

import aiosqlite

from invoicedrive.models import StorageStatus, StorageStatusRecord, utc_now
from invoicedrive.upload.exceptions import RecordExistsError

logger = logging.getLogger(__name__)

COLUMNS: tuple[str, ...] = (
    "artifact_id",
    "remote_object_id",
    "status",
    "uploaded_at",
    "last_attempt_at",
    "retry_count",
    "error_message",
    "created_at",
    "updated_at",
)

UPDATABLE_FIELDS = frozenset(
    {
        "remote_object_id",
        "status",
        "uploaded_at",
        "last_attempt_at",
        "retry_count",
        "error_message",
    }
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS storage_status (
    artifact_id TEXT PRIMARY KEY,
    remote_object_id TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'pending',
    uploaded_at TEXT NOT NULL DEFAULT '',
    last_attempt_at TEXT NOT NULL DEFAULT '',
    retry_count TEXT NOT NULL DEFAULT '0',
    error_message TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_storage_status_status ON storage_status(status);

CREATE TABLE IF NOT EXISTS storage_activity (
    activity_id INTEGER PRIMARY KEY AUTOINCREMENT,
    artifact_id TEXT NOT NULL,
    event TEXT NOT NULL,
    details_json TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_storage_activity_artifact
    ON storage_activity(artifact_id);
"""


# ---------------------------------------------------------------------------
# Row codec
# ---------------------------------------------------------------------------


def _optional(cell: object) -> str | None:
    if cell is None:
        return None
    text = str(cell)
    return text if text.strip() else None


def _format_ts(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_ts(cell: object) -> datetime | None:
    text = _optional(cell)
    if text is None:
        return None
    text = text.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning("Ignoring unparseable timestamp cell %r", cell)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_count(cell: object) -> int:
    try:
        return max(0, int(str(cell).strip()))
    except (TypeError, ValueError):
        return 0


def _parse_status(cell: object) -> StorageStatus:
    text = (_optional(cell) or "").strip().lower()
    try:
        return StorageStatus(text)
    except ValueError:
        logger.warning("Unknown status cell %r, treating as pending", cell)
        return StorageStatus.PENDING


def encode_row(record: StorageStatusRecord) -> list[str]:
    """Encode a record as the nine ordered cells of a status row."""
    return [
        record.artifact_id,
        record.remote_object_id or "",
        record.status.value,
        _format_ts(record.uploaded_at),
        _format_ts(record.last_attempt_at),
        str(record.retry_count),
        record.error_message or "",
        _format_ts(record.created_at),
        _format_ts(record.updated_at),
    ]


def decode_row(cells: Sequence[object]) -> StorageStatusRecord:
    """Decode a status row.

    Short rows are padded with empty cells, empty or whitespace-only cells
    decode to ``None``, and a non-numeric retry count decodes to 0.
    """
    padded = list(cells) + [""] * (len(COLUMNS) - len(cells))
    (
        artifact_id,
        remote_object_id,
        status,
        uploaded_at,
        last_attempt_at,
        retry_count,
        error_message,
        created_at,
        updated_at,
    ) = padded[: len(COLUMNS)]
    now = utc_now()
    return StorageStatusRecord(
        artifact_id=str(artifact_id).strip(),
        remote_object_id=_optional(remote_object_id),
        status=_parse_status(status),
        uploaded_at=_parse_ts(uploaded_at),
        last_attempt_at=_parse_ts(last_attempt_at),
        retry_count=_parse_count(retry_count),
        error_message=_optional(error_message),
        created_at=_parse_ts(created_at) or now,
        updated_at=_parse_ts(updated_at) or now,
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class StorageStatusStore:
    """Async SQLite store for storage status records.

    Usage::

        async with StorageStatusStore("data/storage.db") as store:
            await store.create(StorageStatusRecord(artifact_id="inv-1"))
            failed = await store.list_by_status(StorageStatus.FAILED)
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection with WAL mode and ensure the schema exists."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA synchronous=NORMAL")
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()

    async def close(self) -> None:
        """Close the connection if open."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> StorageStatusStore:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Not connected -- use 'async with' or call connect()")
        return self._db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, artifact_id: str) -> StorageStatusRecord | None:
        """Return the record for *artifact_id*, or ``None``."""
        db = self._ensure_connected()
        cursor = await db.execute(
            f"SELECT {', '.join(COLUMNS)} FROM storage_status WHERE artifact_id = ?",
            (artifact_id,),
        )
        row = await cursor.fetchone()
        return decode_row(tuple(row)) if row is not None else None

    async def get_many(self, artifact_ids: Iterable[str]) -> list[StorageStatusRecord]:
        """Return records for the given ids, skipping unknown ones."""
        ids = list(dict.fromkeys(artifact_ids))
        if not ids:
            return []
        db = self._ensure_connected()
        placeholders = ", ".join("?" for _ in ids)
        cursor = await db.execute(
            f"SELECT {', '.join(COLUMNS)} FROM storage_status "
            f"WHERE artifact_id IN ({placeholders})",
            ids,
        )
        rows = await cursor.fetchall()
        by_id = {r.artifact_id: r for r in (decode_row(tuple(row)) for row in rows)}
        return [by_id[i] for i in ids if i in by_id]

    async def list_by_status(self, status: StorageStatus | str) -> list[StorageStatusRecord]:
        """Return all records in *status*, oldest update first."""
        db = self._ensure_connected()
        cursor = await db.execute(
            f"SELECT {', '.join(COLUMNS)} FROM storage_status "
            "WHERE status = ? ORDER BY updated_at, artifact_id",
            (StorageStatus(status).value,),
        )
        rows = await cursor.fetchall()
        return [decode_row(tuple(row)) for row in rows]

    async def list_all(self) -> list[StorageStatusRecord]:
        """Return every record ordered by artifact id."""
        db = self._ensure_connected()
        cursor = await db.execute(
            f"SELECT {', '.join(COLUMNS)} FROM storage_status ORDER BY artifact_id"
        )
        rows = await cursor.fetchall()
        return [decode_row(tuple(row)) for row in rows]

    async def count_by_status(self) -> dict[str, int]:
        """Return ``{status: count}`` for every status present."""
        db = self._ensure_connected()
        cursor = await db.execute(
            "SELECT status, COUNT(*) AS n FROM storage_status GROUP BY status"
        )
        rows = await cursor.fetchall()
        return {row["status"]: row["n"] for row in rows}

    # ------------------------------------------------------------------
    # Writes (each commits immediately)
    # ------------------------------------------------------------------

    async def create(self, record: StorageStatusRecord) -> StorageStatusRecord:
        """Insert a new record.

        Raises:
            RecordExistsError: If a row for the artifact already exists.
            ValueError: If the record violates a lifecycle invariant.
        """
        record.check_invariants()
        db = self._ensure_connected()
        try:
            await db.execute(
                f"INSERT INTO storage_status ({', '.join(COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in COLUMNS)})",
                encode_row(record),
            )
        except aiosqlite.IntegrityError as exc:
            raise RecordExistsError(record.artifact_id) from exc
        await db.commit()
        logger.debug("Created storage status %s (%s)", record.artifact_id, record.status.value)
        return record

    async def ensure_pending(self, artifact_id: str) -> StorageStatusRecord:
        """Return the existing record or create a fresh ``pending`` one."""
        existing = await self.get(artifact_id)
        if existing is not None:
            return existing
        try:
            return await self.create(StorageStatusRecord(artifact_id=artifact_id))
        except RecordExistsError:
            # Lost a creation race; the other writer's row wins.
            existing = await self.get(artifact_id)
            if existing is None:
                raise
            return existing

    async def update(self, artifact_id: str, **fields: object) -> StorageStatusRecord | None:
        """Merge *fields* into the existing row and refresh ``updated_at``.

        Never creates a row.  Passing a field as ``None`` clears it.

        Returns:
            The updated record, or ``None`` if no row exists.

        Raises:
            ValueError: On unknown field names, invariant violations, or a
                retry count decrease that is not part of a ``stored`` update.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        current = await self.get(artifact_id)
        if current is None:
            return None

        if "status" in fields:
            fields["status"] = StorageStatus(fields["status"])
        merged = dataclasses.replace(current, **fields, updated_at=utc_now())  # type: ignore[arg-type]

        if merged.retry_count < current.retry_count and merged.status != StorageStatus.STORED:
            raise ValueError(
                f"{artifact_id}: retry_count may only be reset by a successful upload "
                f"({current.retry_count} -> {merged.retry_count})"
            )
        merged.check_invariants()

        await self._write(merged)
        logger.debug(
            "Updated storage status %s: %s",
            artifact_id,
            ", ".join(sorted(fields)),
        )
        return merged

    async def increment_retry_count(self, artifact_id: str) -> StorageStatusRecord | None:
        """Add exactly one to ``retry_count`` and stamp ``last_attempt_at``.

        Read-increment-write; other fields are left as they were.

        Returns:
            The updated record, or ``None`` if no row exists.
        """
        current = await self.get(artifact_id)
        if current is None:
            return None
        now = utc_now()
        bumped = dataclasses.replace(
            current,
            retry_count=current.retry_count + 1,
            last_attempt_at=now,
            updated_at=now,
        )
        await self._write(bumped)
        logger.debug("Retry count for %s -> %d", artifact_id, bumped.retry_count)
        return bumped

    async def delete(self, artifact_id: str) -> bool:
        """Remove a record; returns ``True`` if a row was deleted."""
        db = self._ensure_connected()
        cursor = await db.execute(
            "DELETE FROM storage_status WHERE artifact_id = ?", (artifact_id,)
        )
        await db.commit()
        return cursor.rowcount == 1

    async def _write(self, record: StorageStatusRecord) -> None:
        db = self._ensure_connected()
        cells = encode_row(record)
        assignments = ", ".join(f"{col} = ?" for col in COLUMNS[1:])
        await db.execute(
            f"UPDATE storage_status SET {assignments} WHERE artifact_id = ?",
            (*cells[1:], cells[0]),
        )
        await db.commit()

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    async def record_activity(
        self,
        artifact_id: str,
        event: str,
        details: dict | None = None,
    ) -> None:
        """Append an audit event for *artifact_id*."""
        db = self._ensure_connected()
        await db.execute(
            """INSERT INTO storage_activity (artifact_id, event, details_json, created_at)
               VALUES (?, ?, ?, ?)""",
            (
                artifact_id,
                event,
                json.dumps(details or {}, default=str, sort_keys=True),
                _format_ts(utc_now()),
            ),
        )
        await db.commit()

    async def list_activity(self, artifact_id: str) -> list[dict]:
        """Return audit events for *artifact_id*, oldest first."""
        db = self._ensure_connected()
        cursor = await db.execute(
            """SELECT event, details_json, created_at
               FROM storage_activity
               WHERE artifact_id = ?
               ORDER BY activity_id""",
            (artifact_id,),
        )
        rows = await cursor.fetchall()
        return [
            {
                "event": row["event"],
                "details": json.loads(row["details_json"]),
                "created_at": row["created_at"],
            }
            for row in rows
        ]
