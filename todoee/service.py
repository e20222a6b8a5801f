"""Mutating commands on todos and categories.

Each command writes the entity tables and appends the matching operation log
entry inside one transaction, so every state change can be undone and shows
up in the history.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable

from .errors import AmbiguousIdError, NotFoundError, PreconditionError
from .history import OperationLog
from .models import Category, Entity, OperationType, Priority, Todo, restamp, to_iso, utcnow
from .store import LocalStore

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = "1.0"

# Todo fields a user may change through edit_todo
EDITABLE_TODO_FIELDS = frozenset({
    "title",
    "description",
    "due_date",
    "reminder_at",
    "priority",
    "category_id",
})


@dataclass
class BatchResult:
    """Outcome of one command applied to several todos.

    ``failed`` maps each id the command skipped to the reason.
    """

    changed: list[Todo] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


class TodoService:
    """Write-then-log commands for todos and categories."""

    def __init__(self, store: LocalStore, oplog: OperationLog):
        self.store = store
        self.oplog = oplog

    # ==================== Todos ====================

    def add_todo(
        self,
        title: str,
        description: str | None = None,
        due_date: datetime | None = None,
        reminder_at: datetime | None = None,
        priority: Priority = Priority.MEDIUM,
        category_id: str | None = None,
        ai_metadata: dict[str, Any] | None = None,
    ) -> Todo:
        """Create a todo and log it."""
        title = title.strip()
        if not title:
            raise PreconditionError("Title must not be empty")
        if category_id is not None:
            self.store.require_category(category_id)

        todo = Todo(
            title=title,
            description=description,
            due_date=due_date,
            reminder_at=reminder_at,
            priority=priority,
            category_id=category_id,
            ai_metadata=ai_metadata,
        )
        with self.store.transaction():
            self.store.create_todo(todo)
            self.oplog.record(OperationType.CREATE, None, todo)

        logger.info(f"Created todo {todo.id[:8]}: {todo.title}")
        return todo

    def edit_todo(self, todo_id: str, **changes: Any) -> Todo:
        """Replace editable fields of an open todo.

        Raises:
            PreconditionError: Unknown field, nothing to change, or the todo
                is completed.
        """
        unknown = set(changes) - EDITABLE_TODO_FIELDS
        if unknown:
            raise PreconditionError(f"Cannot edit field(s): {', '.join(sorted(unknown))}")
        if not changes:
            raise PreconditionError("Nothing to change")
        if "title" in changes:
            changes["title"] = (changes["title"] or "").strip()
            if not changes["title"]:
                raise PreconditionError("Title must not be empty")
        if changes.get("category_id") is not None:
            self.store.require_category(changes["category_id"])
        if "priority" in changes:
            changes["priority"] = Priority.parse(changes["priority"])

        with self.store.transaction():
            before = self.store.require_todo(todo_id)
            if before.is_completed:
                raise PreconditionError(
                    f"Todo {todo_id[:8]} is completed; reopen it before editing"
                )
            after = self.store.update_todo(replace(before, **changes))
            self.oplog.record(OperationType.UPDATE, before, after)

        logger.info(f"Updated todo {todo_id[:8]}")
        return after

    def complete_todo(self, todo_id: str) -> Todo:
        with self.store.transaction():
            before = self.store.require_todo(todo_id)
            if before.is_completed:
                raise PreconditionError(f"Todo {todo_id[:8]} is already completed")
            after = replace(before)
            after.mark_complete()
            after = self.store.update_todo(after)
            self.oplog.record(OperationType.COMPLETE, before, after)

        logger.info(f"Completed todo {todo_id[:8]}")
        return after

    def uncomplete_todo(self, todo_id: str) -> Todo:
        with self.store.transaction():
            before = self.store.require_todo(todo_id)
            if not before.is_completed:
                raise PreconditionError(f"Todo {todo_id[:8]} is not completed")
            after = replace(before)
            after.mark_incomplete()
            after = self.store.update_todo(after)
            self.oplog.record(OperationType.UNCOMPLETE, before, after)

        logger.info(f"Reopened todo {todo_id[:8]}")
        return after

    def delete_todo(self, todo_id: str) -> Todo:
        with self.store.transaction():
            before = self.store.require_todo(todo_id)
            self.store.delete_todo(todo_id)
            self.oplog.record(OperationType.DELETE, before, None)

        logger.info(f"Deleted todo {todo_id[:8]}")
        return before

    # ==================== Categories ====================

    def add_category(
        self,
        name: str,
        color: str | None = None,
        is_ai_generated: bool = False,
    ) -> Category:
        name = name.strip()
        if not name:
            raise PreconditionError("Category name must not be empty")
        if self.store.get_category_by_name(name) is not None:
            raise PreconditionError(f"Category already exists: {name}")

        category = Category(name=name, color=color, is_ai_generated=is_ai_generated)
        with self.store.transaction():
            self.store.create_category(category)
            self.oplog.record(OperationType.CREATE, None, category)

        logger.info(f"Created category {category.id[:8]}: {category.name}")
        return category

    def get_or_create_category(self, name: str, is_ai_generated: bool = False) -> Category:
        existing = self.store.get_category_by_name(name.strip())
        if existing is not None:
            return existing
        return self.add_category(name, is_ai_generated=is_ai_generated)

    def rename_category(
        self,
        category_id: str,
        name: str,
        color: str | None = None,
    ) -> Category:
        """Rename a category, optionally changing its color too."""
        name = name.strip()
        if not name:
            raise PreconditionError("Category name must not be empty")

        with self.store.transaction():
            before = self.store.require_category(category_id)
            clash = self.store.get_category_by_name(name)
            if clash is not None and clash.id != category_id:
                raise PreconditionError(f"Category already exists: {name}")
            changes: dict[str, Any] = {"name": name}
            if color is not None:
                changes["color"] = color
            after = self.store.update_category(replace(before, **changes))
            self.oplog.record(OperationType.UPDATE, before, after)

        logger.info(f"Renamed category {category_id[:8]} to {name}")
        return after

    def delete_category(self, category_id: str) -> Category:
        """Delete a category no todo refers to."""
        with self.store.transaction():
            before = self.store.require_category(category_id)
            in_use = self.store.count_todos_in_category(category_id)
            if in_use:
                raise PreconditionError(
                    f"Category '{before.name}' is used by {in_use} todo(s)"
                )
            self.store.delete_category(category_id)
            self.oplog.record(OperationType.DELETE, before, None)

        logger.info(f"Deleted category {category_id[:8]}")
        return before

    # ==================== Batches ====================

    def batch_complete(self, refs: list[str]) -> BatchResult:
        """Complete several todos, one log entry each."""
        return self._batch(refs, self.complete_todo)

    def batch_delete(self, refs: list[str]) -> BatchResult:
        return self._batch(refs, self.delete_todo)

    def batch_set_priority(self, refs: list[str], priority: Priority | str | int) -> BatchResult:
        """Set the priority of several open todos."""
        priority = Priority.parse(priority)
        return self._batch(refs, lambda todo_id: self.edit_todo(todo_id, priority=priority))

    def _batch(self, refs: list[str], action: Callable[[str], Todo]) -> BatchResult:
        # Each todo commits on its own so a bad id does not undo the rest
        result = BatchResult()
        for ref in refs:
            try:
                todo_id = self.store.resolve_todo_id(ref)
                result.changed.append(action(todo_id))
            except (NotFoundError, AmbiguousIdError, PreconditionError) as e:
                logger.debug(f"Batch skipped {ref}: {e}")
                result.failed[ref] = str(e)
        logger.info(f"Batch changed {len(result.changed)} todo(s), skipped {len(result.failed)}")
        return result


    # ==================== Export / Import ====================

    def export_data(self, include_completed: bool = True) -> dict[str, Any]:
        """Snapshot of todos and categories in the export file format."""
        return {
            "version": EXPORT_FORMAT_VERSION,
            "exported_at": to_iso(utcnow()),
            "todos": [t.to_dict() for t in self.store.list_todos(include_completed)],
            "categories": [c.to_dict() for c in self.store.list_categories()],
        }

    def import_data(self, data: dict[str, Any], replace_existing: bool = False) -> tuple[int, int]:
        """Load an export into the store, logging each row it writes.

        Ids already present are skipped unless ``replace_existing`` is set, in
        which case they are overwritten. A category whose name belongs to a
        different local category is always skipped, and so is a stashed id.

        Returns:
            Number of todos and number of categories written.

        Raises:
            PreconditionError: The data is not an export.
        """
        try:
            categories = [Category.from_dict(raw) for raw in data.get("categories", [])]
            todos = [Todo.from_dict(raw) for raw in data.get("todos", [])]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise PreconditionError(f"Invalid import data: {e}") from e

        imported_categories = 0
        imported_todos = 0
        with self.store.transaction():
            for category in categories:
                clash = self.store.get_category_by_name(category.name)
                if clash is not None and clash.id != category.id:
                    logger.warning(f"Import skipped category '{category.name}', name in use")
                    continue
                if self._import_entity(category, replace_existing):
                    imported_categories += 1
            for todo in todos:
                if self._import_entity(todo, replace_existing):
                    imported_todos += 1

        logger.info(f"Imported {imported_todos} todos and {imported_categories} categories")
        return imported_todos, imported_categories

    def _import_entity(self, entity: Entity, replace_existing: bool) -> bool:
        if self.store.is_stashed(entity.id):
            logger.warning(f"Import skipped stashed {entity.entity_type.value} {entity.id[:8]}")
            return False
        entity = restamp(entity)
        before = self.store.get_entity(entity.entity_type, entity.id)
        if before is None:
            self.store.insert_entity(entity)
            self.oplog.record(OperationType.CREATE, None, entity)
            return True
        if not replace_existing:
            return False
        self.store.replace_entity(entity)
        self.oplog.record(OperationType.UPDATE, before, entity)
        return True
