"""Append-only operation log backing undo, redo and history views.

Every mutation of the entity tables is recorded here with full before and
after snapshots. Entries are ordered by ``(created_at, id)``; the
autoincrement id breaks ties between entries written within the same clock
tick.
"""

import json
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any

from ..models import (
    Entity,
    EntityType,
    Operation,
    OperationType,
    Snapshot,
    from_iso,
    to_iso,
    utcnow,
)
from ..store import LocalStore

logger = logging.getLogger(__name__)


class OperationLog:
    """Operation log stored next to the entity tables.

    Shares the store's connection so that an entity write and its log entry
    can be committed in one transaction.
    """

    def __init__(self, store: LocalStore):
        """Initialize the operation log.

        Args:
            store: Local store whose database holds the ``operations`` table.
        """
        self.store = store

    def append(self, operation: Operation) -> Operation:
        """Append an entry to the log.

        Args:
            operation: Entry to store. Its ``id`` is assigned here.

        Returns:
            The stored Operation.
        """
        cursor = self.store.execute(
            """
            INSERT INTO operations (
                operation_type, entity_type, entity_id, previous_state,
                new_state, created_at, message, undone
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                operation.operation_type.value,
                operation.entity_type.value,
                operation.entity_id,
                _dump(operation.previous_state),
                _dump(operation.new_state),
                to_iso(operation.created_at),
                operation.message,
                int(operation.undone),
            ),
        )
        operation.id = cursor.lastrowid

        logger.debug(
            f"Logged op {operation.id}: {operation.operation_type.value} "
            f"{operation.entity_type.value} {operation.entity_id}"
        )
        return operation

    def record(
        self,
        operation_type: OperationType,
        before: Entity | None,
        after: Entity | None,
        message: str | None = None,
    ) -> Operation:
        """Build and append the entry describing one transition."""
        subject = after if after is not None else before
        return self.append(
            Operation(
                operation_type=operation_type,
                entity_type=subject.entity_type,
                entity_id=subject.id,
                previous_state=Snapshot.of(before) if before is not None else None,
                new_state=Snapshot.of(after) if after is not None else None,
                message=message,
            )
        )

    def get(self, operation_id: int) -> Operation | None:
        row = self.store.execute(
            "SELECT * FROM operations WHERE id = ?", (operation_id,)
        ).fetchone()
        return _row_to_operation(row) if row else None

    def last_undoable(self) -> Operation | None:
        """Most recent entry that is still applied."""
        row = self.store.execute(
            """
            SELECT * FROM operations
            WHERE undone = 0
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """
        ).fetchone()
        return _row_to_operation(row) if row else None

    def last_redoable(self) -> Operation | None:
        """Most recently undone entry.

        Redo walks back through undos in reverse, so this follows the order
        entries were undone in, not the order they were created in.
        """
        row = self.store.execute(
            """
            SELECT * FROM operations
            WHERE undone = 1
            ORDER BY undo_seq DESC, created_at ASC, id ASC
            LIMIT 1
            """
        ).fetchone()
        return _row_to_operation(row) if row else None

    def mark_undone(self, operation_id: int) -> None:
        cursor = self.store.execute(
            """
            UPDATE operations
            SET undone = 1,
                undo_seq = (SELECT COALESCE(MAX(undo_seq), 0) + 1 FROM operations)
            WHERE id = ? AND undone = 0
            """,
            (operation_id,),
        )
        if cursor.rowcount != 1:
            raise ValueError(f"Operation {operation_id} is missing or already undone")

    def mark_redone(self, operation_id: int) -> None:
        cursor = self.store.execute(
            "UPDATE operations SET undone = 0, undo_seq = NULL WHERE id = ? AND undone = 1",
            (operation_id,),
        )
        if cursor.rowcount != 1:
            raise ValueError(f"Operation {operation_id} is missing or already applied")

    def list_recent(self, limit: int = 10) -> list[Operation]:
        """Newest entries first."""
        cursor = self.store.execute(
            "SELECT * FROM operations ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [_row_to_operation(row) for row in cursor]

    def list_since(self, since: datetime) -> list[Operation]:
        """Entries created at or after ``since``, newest first."""
        cursor = self.store.execute(
            """
            SELECT * FROM operations
            WHERE created_at >= ?
            ORDER BY created_at DESC, id DESC
            """,
            (to_iso(since),),
        )
        return [_row_to_operation(row) for row in cursor]

    def count_older_than(self, days: int) -> int:
        cutoff = to_iso(utcnow() - timedelta(days=days))
        row = self.store.execute(
            "SELECT COUNT(*) FROM operations WHERE created_at < ?", (cutoff,)
        ).fetchone()
        return row[0]

    def sweep(self, days: int) -> int:
        """Delete entries older than ``days``. Swept entries can no longer be undone.

        Args:
            days: Age threshold in days.

        Returns:
            Number of entries deleted.
        """
        cutoff = to_iso(utcnow() - timedelta(days=days))
        cursor = self.store.execute(
            "DELETE FROM operations WHERE created_at < ?", (cutoff,)
        )

        deleted = cursor.rowcount
        if deleted > 0:
            logger.info(f"Swept {deleted} operations older than {days} days")

        return deleted

    def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {}

        stats["total_entries"] = self.store.execute(
            "SELECT COUNT(*) FROM operations"
        ).fetchone()[0]
        stats["undone_entries"] = self.store.execute(
            "SELECT COUNT(*) FROM operations WHERE undone = 1"
        ).fetchone()[0]

        cursor = self.store.execute(
            "SELECT operation_type, COUNT(*) FROM operations GROUP BY operation_type"
        )
        stats["entries_by_type"] = {row[0]: row[1] for row in cursor}

        return stats


def _dump(snapshot: Snapshot | None) -> str | None:
    return json.dumps(snapshot.to_dict()) if snapshot is not None else None


def _load(raw: str | None) -> Snapshot | None:
    return Snapshot.from_dict(json.loads(raw)) if raw else None


def _row_to_operation(row: sqlite3.Row) -> Operation:
    return Operation(
        id=row["id"],
        operation_type=OperationType(row["operation_type"]),
        entity_type=EntityType(row["entity_type"]),
        entity_id=row["entity_id"],
        previous_state=_load(row["previous_state"]),
        new_state=_load(row["new_state"]),
        created_at=from_iso(row["created_at"]),
        message=row["message"],
        undone=bool(row["undone"]),
    )
