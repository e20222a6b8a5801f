"""Local SQLite storage for todos, categories, stash entries and tombstones."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterator

from ..errors import (
    AlreadyStashedError,
    AmbiguousIdError,
    NotFoundError,
    PreconditionError,
    StorageError,
)
from ..models import (
    Category,
    Entity,
    EntityType,
    Priority,
    Snapshot,
    StashEntry,
    SyncStatus,
    Todo,
    Tombstone,
    from_iso,
    to_iso,
    utcnow,
)

logger = logging.getLogger(__name__)

# SQL schema for the local database
SCHEMA = """
-- Current-state entity tables
CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    color TEXT,
    is_ai_generated INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    sync_status TEXT NOT NULL DEFAULT 'pending'
);

CREATE TABLE IF NOT EXISTS todos (
    id TEXT PRIMARY KEY,
    category_id TEXT REFERENCES categories(id),
    title TEXT NOT NULL,
    description TEXT,
    due_date TEXT,
    reminder_at TEXT,
    priority INTEGER NOT NULL DEFAULT 2,
    is_completed INTEGER NOT NULL DEFAULT 0,
    completed_at TEXT,
    ai_metadata TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    sync_status TEXT NOT NULL DEFAULT 'pending'
);

CREATE INDEX IF NOT EXISTS idx_todos_due_date ON todos(due_date);
CREATE INDEX IF NOT EXISTS idx_todos_sync_status ON todos(sync_status);
CREATE INDEX IF NOT EXISTS idx_categories_sync_status ON categories(sync_status);

-- Operation log: append-only, only the undone flag and its sequence are ever updated
CREATE TABLE IF NOT EXISTS operations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    operation_type TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    previous_state TEXT,
    new_state TEXT,
    created_at TEXT NOT NULL,
    message TEXT,
    undone INTEGER NOT NULL DEFAULT 0,
    undo_seq INTEGER
);

CREATE INDEX IF NOT EXISTS idx_operations_created_at ON operations(created_at DESC, id DESC);
CREATE INDEX IF NOT EXISTS idx_operations_undone ON operations(undone, created_at DESC, id DESC);
CREATE INDEX IF NOT EXISTS idx_operations_undo_seq ON operations(undo_seq DESC);

-- Stash: entities temporarily removed from the entity tables
CREATE TABLE IF NOT EXISTS stash (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id TEXT NOT NULL UNIQUE,
    entity_type TEXT NOT NULL,
    snapshot TEXT NOT NULL,
    stashed_at TEXT NOT NULL,
    message TEXT
);

-- Tombstones: local hard deletes not yet confirmed by the remote
CREATE TABLE IF NOT EXISTS tombstones (
    entity_id TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL,
    deleted_at TEXT NOT NULL,
    confirmed INTEGER NOT NULL DEFAULT 0
);

-- Sync checkpoints and other small key/value state
CREATE TABLE IF NOT EXISTS sync_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

TODO_COLUMNS = (
    "id", "category_id", "title", "description", "due_date", "reminder_at",
    "priority", "is_completed", "completed_at", "ai_metadata",
    "created_at", "updated_at", "sync_status",
)

CATEGORY_COLUMNS = (
    "id", "name", "color", "is_ai_generated",
    "created_at", "updated_at", "sync_status",
)


class LocalStore:
    """SQLite-backed entity store.

    Writes outside :meth:`transaction` commit immediately. Inside a
    transaction, every write lands or none does.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the local store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None
        self._tx_depth = 0

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            # Autocommit mode; transaction() issues BEGIN/COMMIT itself
            self._conn = sqlite3.connect(
                str(self.db_path), check_same_thread=False, isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA busy_timeout = 5000")
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open database {self.db_path}: {e}") from e

        logger.info(f"LocalStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            self._tx_depth = 0
            logger.info("LocalStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure we have a database connection."""
        if self._conn is None:
            self.connect()
        return self._conn

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run one statement, translating sqlite errors into StorageError."""
        conn = self._ensure_connected()
        try:
            return conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator["LocalStore"]:
        """Group writes into one atomic unit.

        Nested calls join the outermost transaction. Any exception rolls
        the whole unit back and propagates.
        """
        conn = self._ensure_connected()
        if self._tx_depth == 0:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Failed to begin transaction: {e}") from e
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                conn.execute("ROLLBACK")
                logger.debug("Transaction rolled back")
            raise
        else:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error as e:
                    conn.execute("ROLLBACK")
                    raise StorageError(f"Failed to commit: {e}") from e

    # ==================== Todo Operations ====================

    def create_todo(self, todo: Todo) -> Todo:
        """Insert a todo exactly as given.

        Re-inserting an id clears any tombstone left for it.

        Raises:
            PreconditionError: A todo with this id already exists.
        """
        self._insert_row("todos", TODO_COLUMNS, self._todo_params(todo), todo.id)
        self.remove_tombstone(todo.id)
        return todo

    def get_todo(self, todo_id: str) -> Todo | None:
        row = self.execute("SELECT * FROM todos WHERE id = ?", (todo_id,)).fetchone()
        return self._row_to_todo(row) if row else None

    def require_todo(self, todo_id: str) -> Todo:
        todo = self.get_todo(todo_id)
        if todo is None:
            raise NotFoundError("todo", todo_id)
        return todo

    def update_todo(self, todo: Todo) -> Todo:
        """Replace a todo with a new full value, marking it as a local change.

        Returns:
            The stored todo with ``updated_at`` advanced and status pending.
        """
        stored = replace(todo, updated_at=utcnow(), sync_status=SyncStatus.PENDING)
        self.put_todo(stored)
        return stored

    def put_todo(self, todo: Todo) -> None:
        """Overwrite an existing row verbatim, bookkeeping included."""
        params = self._todo_params(todo)
        assignments = ", ".join(f"{c} = ?" for c in TODO_COLUMNS[1:])
        cursor = self.execute(
            f"UPDATE todos SET {assignments} WHERE id = ?",
            (*params[1:], todo.id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError("todo", todo.id)

    def delete_todo(self, todo_id: str, tombstone: bool = True) -> None:
        """Hard-delete a todo.

        Args:
            todo_id: Id of the todo.
            tombstone: Record the deletion so sync propagates it.
        """
        cursor = self.execute("DELETE FROM todos WHERE id = ?", (todo_id,))
        if cursor.rowcount == 0:
            raise NotFoundError("todo", todo_id)
        if tombstone:
            self.add_tombstone(EntityType.TODO, todo_id)

    def list_todos(self, include_completed: bool = True) -> list[Todo]:
        if include_completed:
            sql = "SELECT * FROM todos ORDER BY created_at DESC"
        else:
            sql = "SELECT * FROM todos WHERE is_completed = 0 ORDER BY created_at DESC"
        return [self._row_to_todo(row) for row in self.execute(sql)]

    def list_todos_by_category(self, category_id: str) -> list[Todo]:
        cursor = self.execute(
            "SELECT * FROM todos WHERE category_id = ? ORDER BY created_at DESC",
            (category_id,),
        )
        return [self._row_to_todo(row) for row in cursor]

    def list_todos_due_between(self, start: datetime, end: datetime) -> list[Todo]:
        cursor = self.execute(
            """
            SELECT * FROM todos
            WHERE due_date >= ? AND due_date <= ?
            ORDER BY due_date ASC
            """,
            (to_iso(start), to_iso(end)),
        )
        return [self._row_to_todo(row) for row in cursor]

    def list_todos_upcoming(self, limit: int = 10) -> list[Todo]:
        cursor = self.execute(
            """
            SELECT * FROM todos
            WHERE is_completed = 0 AND due_date IS NOT NULL AND due_date >= ?
            ORDER BY due_date ASC
            LIMIT ?
            """,
            (to_iso(utcnow()), limit),
        )
        return [self._row_to_todo(row) for row in cursor]

    def list_todos_overdue(self) -> list[Todo]:
        cursor = self.execute(
            """
            SELECT * FROM todos
            WHERE is_completed = 0 AND due_date IS NOT NULL AND due_date < ?
            ORDER BY due_date ASC
            """,
            (to_iso(utcnow()),),
        )
        return [self._row_to_todo(row) for row in cursor]

    def list_todos_with_reminders_due(self, window: timedelta) -> list[Todo]:
        """Open todos whose reminder falls between now and now + window."""
        now = utcnow()
        cursor = self.execute(
            """
            SELECT * FROM todos
            WHERE is_completed = 0
              AND reminder_at IS NOT NULL
              AND reminder_at >= ? AND reminder_at <= ?
            ORDER BY reminder_at ASC
            """,
            (to_iso(now), to_iso(now + window)),
        )
        return [self._row_to_todo(row) for row in cursor]

    def search_todos(self, query: str, limit: int = 20) -> list[Todo]:
        """Todos whose title matches ``query``, best match first.

        A substring match ranks highest; otherwise every character of the
        query has to appear in the title in order.
        """
        needle = query.strip().lower()
        if not needle:
            return []
        scored = []
        for todo in self.list_todos():
            score = fuzzy_score(todo.title.lower(), needle)
            if score > 0:
                scored.append((score, todo))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [todo for _, todo in scored[:limit]]

    def resolve_todo_id(self, prefix: str) -> str:
        """Expand a short id prefix to a full todo id."""
        return self._resolve_id("todos", "todo", prefix)

    # ==================== Category Operations ====================

    def create_category(self, category: Category) -> Category:
        """Insert a category exactly as given.

        Raises:
            PreconditionError: The id or the name is already taken.
        """
        self._insert_row(
            "categories", CATEGORY_COLUMNS, self._category_params(category), category.id
        )
        self.remove_tombstone(category.id)
        return category

    def get_category(self, category_id: str) -> Category | None:
        row = self.execute(
            "SELECT * FROM categories WHERE id = ?", (category_id,)
        ).fetchone()
        return self._row_to_category(row) if row else None

    def require_category(self, category_id: str) -> Category:
        category = self.get_category(category_id)
        if category is None:
            raise NotFoundError("category", category_id)
        return category

    def get_category_by_name(self, name: str) -> Category | None:
        row = self.execute(
            "SELECT * FROM categories WHERE name = ? COLLATE NOCASE", (name,)
        ).fetchone()
        return self._row_to_category(row) if row else None

    def update_category(self, category: Category) -> Category:
        stored = replace(category, updated_at=utcnow(), sync_status=SyncStatus.PENDING)
        self.put_category(stored)
        return stored

    def put_category(self, category: Category) -> None:
        params = self._category_params(category)
        assignments = ", ".join(f"{c} = ?" for c in CATEGORY_COLUMNS[1:])
        try:
            cursor = self.execute(
                f"UPDATE categories SET {assignments} WHERE id = ?",
                (*params[1:], category.id),
            )
        except StorageError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise PreconditionError(
                    f"Category name already in use: {category.name}"
                ) from e
            raise
        if cursor.rowcount == 0:
            raise NotFoundError("category", category.id)

    def delete_category(self, category_id: str, tombstone: bool = True) -> None:
        cursor = self.execute("DELETE FROM categories WHERE id = ?", (category_id,))
        if cursor.rowcount == 0:
            raise NotFoundError("category", category_id)
        if tombstone:
            self.add_tombstone(EntityType.CATEGORY, category_id)

    def list_categories(self) -> list[Category]:
        cursor = self.execute("SELECT * FROM categories ORDER BY name ASC")
        return [self._row_to_category(row) for row in cursor]

    def count_todos_in_category(self, category_id: str) -> int:
        row = self.execute(
            "SELECT COUNT(*) FROM todos WHERE category_id = ?", (category_id,)
        ).fetchone()
        return row[0]

    def resolve_category_id(self, prefix: str) -> str:
        return self._resolve_id("categories", "category", prefix)

    # ==================== Generic Entity Access ====================

    def get_entity(self, entity_type: EntityType, entity_id: str) -> Entity | None:
        if entity_type == EntityType.TODO:
            return self.get_todo(entity_id)
        return self.get_category(entity_id)

    def find_entity(self, entity_id: str) -> Entity | None:
        """Look an id up in every entity table."""
        return self.get_todo(entity_id) or self.get_category(entity_id)

    def insert_entity(self, entity: Entity) -> Entity:
        if isinstance(entity, Todo):
            return self.create_todo(entity)
        return self.create_category(entity)

    def replace_entity(self, entity: Entity) -> None:
        """Overwrite a stored entity verbatim, bookkeeping included."""
        if isinstance(entity, Todo):
            self.put_todo(entity)
        else:
            self.put_category(entity)

    def delete_entity(
        self, entity_type: EntityType, entity_id: str, tombstone: bool = True
    ) -> None:
        if entity_type == EntityType.TODO:
            self.delete_todo(entity_id, tombstone=tombstone)
        else:
            self.delete_category(entity_id, tombstone=tombstone)

    # ==================== Sync Markers ====================

    def list_pending(self, entity_type: EntityType) -> list[Entity]:
        """Rows that still have to reach the remote, oldest change first."""
        table = _table(entity_type)
        cursor = self.execute(
            f"""
            SELECT * FROM {table}
            WHERE sync_status IN ('pending', 'conflict')
            ORDER BY updated_at ASC
            """
        )
        convert = self._row_to_todo if entity_type == EntityType.TODO else self._row_to_category
        return [convert(row) for row in cursor]

    def mark_synced(
        self,
        entity_type: EntityType,
        entity_id: str,
        updated_at: datetime | None = None,
    ) -> bool:
        """Mark a row synced.

        Args:
            entity_type: Table to update.
            entity_id: Row id.
            updated_at: If given, only mark the row when it still carries this
                revision, so an edit made after the upload stays pending.

        Returns:
            True if a row was marked.
        """
        table = _table(entity_type)
        if updated_at is None:
            cursor = self.execute(
                f"UPDATE {table} SET sync_status = 'synced' WHERE id = ?",
                (entity_id,),
            )
        else:
            cursor = self.execute(
                f"UPDATE {table} SET sync_status = 'synced' WHERE id = ? AND updated_at = ?",
                (entity_id, to_iso(updated_at)),
            )
        return cursor.rowcount > 0

    def mark_conflict(self, entity_type: EntityType, entity_id: str) -> None:
        """Flag a row as conflicting and stamp it as the newest local change."""
        self.execute(
            f"UPDATE {_table(entity_type)} SET sync_status = 'conflict', updated_at = ? WHERE id = ?",
            (to_iso(utcnow()), entity_id),
        )

    def get_sync_state(self, key: str, default: str | None = None) -> str | None:
        row = self.execute(
            "SELECT value FROM sync_state WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else default

    def set_sync_state(self, key: str, value: str) -> None:
        self.execute(
            """
            INSERT INTO sync_state (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )

    # ==================== Tombstones ====================

    def add_tombstone(
        self,
        entity_type: EntityType,
        entity_id: str,
        deleted_at: datetime | None = None,
    ) -> None:
        self.execute(
            """
            INSERT INTO tombstones (entity_id, entity_type, deleted_at, confirmed)
            VALUES (?, ?, ?, 0)
            ON CONFLICT(entity_id) DO UPDATE SET
                deleted_at = excluded.deleted_at, confirmed = 0
            """,
            (entity_id, entity_type.value, to_iso(deleted_at or utcnow())),
        )

    def remove_tombstone(self, entity_id: str) -> None:
        self.execute("DELETE FROM tombstones WHERE entity_id = ?", (entity_id,))

    def get_tombstone(self, entity_id: str) -> Tombstone | None:
        row = self.execute(
            "SELECT * FROM tombstones WHERE entity_id = ?", (entity_id,)
        ).fetchone()
        return self._row_to_tombstone(row) if row else None

    def list_tombstones(
        self,
        entity_type: EntityType | None = None,
        confirmed: bool | None = None,
    ) -> list[Tombstone]:
        clauses = []
        params: list[Any] = []
        if entity_type is not None:
            clauses.append("entity_type = ?")
            params.append(entity_type.value)
        if confirmed is not None:
            clauses.append("confirmed = ?")
            params.append(int(confirmed))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        cursor = self.execute(
            f"SELECT * FROM tombstones {where} ORDER BY deleted_at ASC", tuple(params)
        )
        return [self._row_to_tombstone(row) for row in cursor]

    def confirm_tombstones(self, entity_ids: list[str]) -> int:
        if not entity_ids:
            return 0
        placeholders = ",".join("?" * len(entity_ids))
        cursor = self.execute(
            f"UPDATE tombstones SET confirmed = 1 WHERE entity_id IN ({placeholders})",
            tuple(entity_ids),
        )
        return cursor.rowcount

    def sweep_tombstones(self) -> int:
        """Drop tombstones the remote has confirmed."""
        cursor = self.execute("DELETE FROM tombstones WHERE confirmed = 1")
        return cursor.rowcount

    # ==================== Stash Table ====================

    def insert_stash_entry(self, entry: StashEntry) -> None:
        try:
            self._ensure_connected().execute(
                """
                INSERT INTO stash (entity_id, entity_type, snapshot, stashed_at, message)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    entry.entity_id,
                    entry.entity_type.value,
                    json.dumps(entry.snapshot.to_dict()),
                    to_iso(entry.stashed_at),
                    entry.message,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise AlreadyStashedError(entry.entity_id) from e
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}") from e

    def get_stash_entry(self, entity_id: str) -> StashEntry | None:
        row = self.execute(
            "SELECT * FROM stash WHERE entity_id = ?", (entity_id,)
        ).fetchone()
        return self._row_to_stash(row) if row else None

    def latest_stash_entry(self) -> StashEntry | None:
        row = self.execute(
            "SELECT * FROM stash ORDER BY stashed_at DESC, seq DESC LIMIT 1"
        ).fetchone()
        return self._row_to_stash(row) if row else None

    def list_stash_entries(self) -> list[StashEntry]:
        cursor = self.execute("SELECT * FROM stash ORDER BY stashed_at DESC, seq DESC")
        return [self._row_to_stash(row) for row in cursor]

    def delete_stash_entry(self, entity_id: str) -> bool:
        cursor = self.execute("DELETE FROM stash WHERE entity_id = ?", (entity_id,))
        return cursor.rowcount > 0

    def clear_stash_entries(self) -> int:
        cursor = self.execute("DELETE FROM stash")
        return cursor.rowcount

    def is_stashed(self, entity_id: str) -> bool:
        row = self.execute(
            "SELECT 1 FROM stash WHERE entity_id = ?", (entity_id,)
        ).fetchone()
        return row is not None

    # ==================== Maintenance ====================

    def get_stats(self) -> dict[str, Any]:
        """Get database statistics.

        Returns:
            Dict with counts and size info.
        """
        stats: dict[str, Any] = {}

        stats["todos_count"] = self.execute("SELECT COUNT(*) FROM todos").fetchone()[0]
        stats["todos_open"] = self.execute(
            "SELECT COUNT(*) FROM todos WHERE is_completed = 0"
        ).fetchone()[0]
        stats["categories_count"] = self.execute(
            "SELECT COUNT(*) FROM categories"
        ).fetchone()[0]
        stats["pending_sync"] = sum(
            self.execute(
                f"SELECT COUNT(*) FROM {table} WHERE sync_status != 'synced'"
            ).fetchone()[0]
            for table in ("todos", "categories")
        )
        stats["operations_count"] = self.execute(
            "SELECT COUNT(*) FROM operations"
        ).fetchone()[0]
        stats["stash_count"] = self.execute("SELECT COUNT(*) FROM stash").fetchone()[0]
        stats["tombstones_count"] = self.execute(
            "SELECT COUNT(*) FROM tombstones"
        ).fetchone()[0]

        if isinstance(self.db_path, Path) and self.db_path.exists():
            stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 2)

        return stats

    # ==================== Row Mapping ====================

    def _insert_row(
        self, table: str, columns: tuple[str, ...], params: tuple, entity_id: str
    ) -> None:
        placeholders = ",".join("?" * len(columns))
        try:
            self._ensure_connected().execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                params,
            )
        except sqlite3.IntegrityError as e:
            raise PreconditionError(
                f"Cannot insert into {table}, {entity_id} conflicts: {e}"
            ) from e
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}") from e

    def _resolve_id(self, table: str, kind: str, prefix: str) -> str:
        prefix = prefix.strip().lower()
        if not prefix:
            raise NotFoundError(kind, prefix)
        cursor = self.execute(
            f"SELECT id FROM {table} WHERE id LIKE ? ESCAPE '\\' LIMIT 10",
            (prefix.replace("%", "\\%").replace("_", "\\_") + "%",),
        )
        matches = [row["id"] for row in cursor]
        if not matches:
            raise NotFoundError(kind, prefix)
        if prefix in matches:
            return prefix
        if len(matches) > 1:
            raise AmbiguousIdError(prefix, matches)
        return matches[0]

    @staticmethod
    def _todo_params(todo: Todo) -> tuple:
        return (
            todo.id,
            todo.category_id,
            todo.title,
            todo.description,
            to_iso(todo.due_date),
            to_iso(todo.reminder_at),
            todo.priority.value,
            int(todo.is_completed),
            to_iso(todo.completed_at),
            json.dumps(todo.ai_metadata) if todo.ai_metadata is not None else None,
            to_iso(todo.created_at),
            to_iso(todo.updated_at),
            todo.sync_status.value,
        )

    @staticmethod
    def _category_params(category: Category) -> tuple:
        return (
            category.id,
            category.name,
            category.color,
            int(category.is_ai_generated),
            to_iso(category.created_at),
            to_iso(category.updated_at),
            category.sync_status.value,
        )

    @staticmethod
    def _row_to_todo(row: sqlite3.Row) -> Todo:
        return Todo(
            id=row["id"],
            category_id=row["category_id"],
            title=row["title"],
            description=row["description"],
            due_date=from_iso(row["due_date"]),
            reminder_at=from_iso(row["reminder_at"]),
            priority=Priority(row["priority"]),
            is_completed=bool(row["is_completed"]),
            completed_at=from_iso(row["completed_at"]),
            ai_metadata=json.loads(row["ai_metadata"]) if row["ai_metadata"] else None,
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
            sync_status=SyncStatus(row["sync_status"]),
        )

    @staticmethod
    def _row_to_category(row: sqlite3.Row) -> Category:
        return Category(
            id=row["id"],
            name=row["name"],
            color=row["color"],
            is_ai_generated=bool(row["is_ai_generated"]),
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
            sync_status=SyncStatus(row["sync_status"]),
        )

    @staticmethod
    def _row_to_tombstone(row: sqlite3.Row) -> Tombstone:
        return Tombstone(
            entity_type=EntityType(row["entity_type"]),
            entity_id=row["entity_id"],
            deleted_at=from_iso(row["deleted_at"]),
            confirmed=bool(row["confirmed"]),
        )

    @staticmethod
    def _row_to_stash(row: sqlite3.Row) -> StashEntry:
        return StashEntry(
            entity_id=row["entity_id"],
            entity_type=EntityType(row["entity_type"]),
            snapshot=Snapshot.from_dict(json.loads(row["snapshot"])),
            stashed_at=from_iso(row["stashed_at"]),
            message=row["message"],
        )


def _table(entity_type: EntityType) -> str:
    return "todos" if entity_type == EntityType.TODO else "categories"


def fuzzy_score(haystack: str, needle: str) -> int:
    """Score how well ``needle`` matches ``haystack``; 0 means no match."""
    if needle in haystack:
        return 100

    score = 0
    position = 0
    for char in needle:
        found = haystack.find(char, position)
        if found < 0:
            return 0
        score += 10
        # Consecutive characters
        if position and found == position:
            score += 5
        position = found + 1

    if any(word.startswith(needle[0]) for word in haystack.split()):
        score += 15
    return score
