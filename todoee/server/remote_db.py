"""SQLite storage behind ``todoee serve``.

Every write bumps a global revision counter; clients pull everything past
the last revision they saw. Deletions are kept as soft-deleted rows so that
they can be pulled like any other change.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from ..models import EntityType, entity_from_dict, from_iso, to_iso

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS remote_rows (
    entity_type TEXT NOT NULL,
    id TEXT NOT NULL,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted INTEGER NOT NULL DEFAULT 0,
    deleted_at TEXT,
    revision INTEGER NOT NULL,
    PRIMARY KEY (entity_type, id)
);

CREATE INDEX IF NOT EXISTS idx_remote_rows_revision ON remote_rows(entity_type, revision);

CREATE TABLE IF NOT EXISTS remote_meta (
    key TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);
"""


class RemoteDB:
    """Row store with server-side last-write-wins."""

    def __init__(self, db_path: str | Path):
        """Initialize the remote database.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.execute(
            "INSERT OR IGNORE INTO remote_meta (key, value) VALUES ('revision', 0)"
        )
        self._conn.commit()
        logger.info(f"RemoteDB connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    @property
    def revision(self) -> int:
        conn = self._ensure_connected()
        return conn.execute(
            "SELECT value FROM remote_meta WHERE key = 'revision'"
        ).fetchone()[0]

    def _next_revision(self, conn: sqlite3.Connection) -> int:
        conn.execute("UPDATE remote_meta SET value = value + 1 WHERE key = 'revision'")
        return conn.execute(
            "SELECT value FROM remote_meta WHERE key = 'revision'"
        ).fetchone()[0]

    def _get_row(self, conn: sqlite3.Connection, entity_type: EntityType, entity_id: str):
        return conn.execute(
            "SELECT * FROM remote_rows WHERE entity_type = ? AND id = ?",
            (entity_type.value, entity_id),
        ).fetchone()

    def upsert(
        self, entity_type: EntityType, entities: list[dict[str, Any]]
    ) -> tuple[list[str], list[dict[str, Any]]]:
        """Store rows unless the stored copy is newer.

        A row older than a soft deletion of the same id is not stored; the
        deletion gets a fresh revision so the client pulls it again.

        Args:
            entity_type: Kind of rows.
            entities: Entity dicts as produced by ``to_dict``.

        Returns:
            Tuple of (accepted_ids, stored copies of rejected rows).

        Raises:
            ValueError: A row is not a valid entity.
        """
        conn = self._ensure_connected()
        accepted: list[str] = []
        rejected: list[dict[str, Any]] = []

        try:
            parsed = [entity_from_dict(entity_type, raw) for raw in entities]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed {entity_type.value}: {e}") from e

        for entity in parsed:
            data = entity.to_dict()
            data.pop("sync_status", None)
            incoming_at = to_iso(entity.updated_at)

            existing = self._get_row(conn, entity_type, entity.id)
            if existing is not None:
                if existing["deleted"]:
                    if incoming_at <= existing["deleted_at"]:
                        conn.execute(
                            "UPDATE remote_rows SET revision = ? WHERE entity_type = ? AND id = ?",
                            (self._next_revision(conn), entity_type.value, entity.id),
                        )
                        continue
                elif incoming_at < existing["updated_at"]:
                    rejected.append(json.loads(existing["data"]))
                    continue

            conn.execute(
                """
                INSERT INTO remote_rows (entity_type, id, data, updated_at, deleted, deleted_at, revision)
                VALUES (?, ?, ?, ?, 0, NULL, ?)
                ON CONFLICT(entity_type, id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at,
                    deleted = 0,
                    deleted_at = NULL,
                    revision = excluded.revision
                """,
                (
                    entity_type.value,
                    entity.id,
                    json.dumps(data),
                    incoming_at,
                    self._next_revision(conn),
                ),
            )
            accepted.append(entity.id)

        conn.commit()
        logger.debug(
            f"Upserted {len(accepted)} {entity_type.value} rows, rejected {len(rejected)}"
        )
        return accepted, rejected

    def soft_delete(
        self, entity_type: EntityType, tombstones: list[dict[str, Any]]
    ) -> list[str]:
        """Mark rows deleted.

        Ids the store never saw, or already deleted, are acknowledged
        without a new revision.

        Returns:
            Acknowledged ids.
        """
        conn = self._ensure_connected()
        confirmed: list[str] = []

        for tombstone in tombstones:
            entity_id = tombstone["id"]
            deleted_at = to_iso(from_iso(tombstone["deleted_at"]))
            existing = self._get_row(conn, entity_type, entity_id)
            if existing is not None and not existing["deleted"]:
                conn.execute(
                    """
                    UPDATE remote_rows
                    SET deleted = 1, deleted_at = ?, revision = ?
                    WHERE entity_type = ? AND id = ?
                    """,
                    (deleted_at, self._next_revision(conn), entity_type.value, entity_id),
                )
            confirmed.append(entity_id)

        conn.commit()
        return confirmed

    def changes_since(
        self, entity_type: EntityType, since: int, limit: int
    ) -> dict[str, Any]:
        """Rows with a revision past ``since``, oldest first.

        Returns:
            Dict with ``entities``, ``revision`` and ``has_more``.
        """
        conn = self._ensure_connected()
        rows = conn.execute(
            """
            SELECT * FROM remote_rows
            WHERE entity_type = ? AND revision > ?
            ORDER BY revision ASC
            LIMIT ?
            """,
            (entity_type.value, since, limit + 1),
        ).fetchall()

        has_more = len(rows) > limit
        rows = rows[:limit]

        entities = []
        for row in rows:
            data = json.loads(row["data"])
            if row["deleted"] and row["deleted_at"] > data["updated_at"]:
                # A deletion counts as the latest write
                data["updated_at"] = row["deleted_at"]
            entities.append(
                {"entity": data, "deleted": bool(row["deleted"]), "revision": row["revision"]}
            )

        return {
            "entities": entities,
            "revision": rows[-1]["revision"] if rows else since,
            "has_more": has_more,
        }

    def get_stats(self) -> dict[str, Any]:
        conn = self._ensure_connected()
        stats: dict[str, Any] = {"revision": self.revision}
        cursor = conn.execute(
            """
            SELECT entity_type, SUM(deleted = 0), SUM(deleted = 1)
            FROM remote_rows GROUP BY entity_type
            """
        )
        for row in cursor:
            stats[row[0]] = {"live": row[1], "deleted": row[2]}
        return stats
