"""Tests for the todo and category commands."""

import pytest

from todoee.errors import NotFoundError, PreconditionError
from todoee.history import OperationLog, UndoEngine
from todoee.models import OperationType, Priority, SyncStatus
from todoee.service import TodoService
from todoee.store import LocalStore


@pytest.fixture
def store():
    """Create an in-memory LocalStore."""
    store = LocalStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def oplog(store):
    return OperationLog(store)


@pytest.fixture
def service(store, oplog):
    return TodoService(store, oplog)


class TestTodoCommands:
    """Tests for todo commands."""

    def test_add_logs_create(self, service, store, oplog):
        """Test add stores the todo and logs a CREATE entry."""
        todo = service.add_todo("  Buy milk  ", priority=Priority.HIGH)

        assert todo.title == "Buy milk"
        assert store.get_todo(todo.id).priority == Priority.HIGH
        op = oplog.last_undoable()
        assert op.operation_type == OperationType.CREATE
        assert op.previous_state is None
        assert op.new_state.decode() == todo

    def test_add_empty_title(self, service, store):
        """Test an empty title is rejected without writing."""
        with pytest.raises(PreconditionError):
            service.add_todo("   ")
        assert store.list_todos() == []

    def test_add_unknown_category(self, service):
        """Test a dangling category id is rejected."""
        with pytest.raises(NotFoundError):
            service.add_todo("Report", category_id="missing")

    def test_edit_records_both_states(self, service, oplog):
        """Test edit logs the before and after values."""
        todo = service.add_todo("Buy milk")
        after = service.edit_todo(todo.id, title="Buy oat milk", priority="low")

        assert after.priority == Priority.LOW
        assert after.sync_status == SyncStatus.PENDING
        op = oplog.last_undoable()
        assert op.operation_type == OperationType.UPDATE
        assert op.previous_state.decode().title == "Buy milk"
        assert op.new_state.decode().title == "Buy oat milk"

    def test_edit_rejects_unknown_field(self, service):
        """Test bookkeeping fields cannot be edited."""
        todo = service.add_todo("Buy milk")
        with pytest.raises(PreconditionError):
            service.edit_todo(todo.id, sync_status="synced")

    def test_edit_requires_changes(self, service):
        """Test an empty change set is rejected."""
        todo = service.add_todo("Buy milk")
        with pytest.raises(PreconditionError):
            service.edit_todo(todo.id)

    def test_edit_completed_rejected(self, service):
        """Test completed todos must be reopened first."""
        todo = service.add_todo("Buy milk")
        service.complete_todo(todo.id)
        with pytest.raises(PreconditionError):
            service.edit_todo(todo.id, title="Buy bread")

    def test_complete_and_uncomplete(self, service, oplog):
        """Test completion toggles and preconditions."""
        todo = service.add_todo("Buy milk")

        done = service.complete_todo(todo.id)
        assert done.is_completed
        assert done.completed_at is not None
        assert oplog.last_undoable().operation_type == OperationType.COMPLETE
        with pytest.raises(PreconditionError):
            service.complete_todo(todo.id)

        reopened = service.uncomplete_todo(todo.id)
        assert not reopened.is_completed
        assert oplog.last_undoable().operation_type == OperationType.UNCOMPLETE
        with pytest.raises(PreconditionError):
            service.uncomplete_todo(todo.id)

    def test_delete_leaves_tombstone(self, service, store, oplog):
        """Test delete removes the row, tombstones it and logs DELETE."""
        todo = service.add_todo("Buy milk")
        service.delete_todo(todo.id)

        assert store.get_todo(todo.id) is None
        assert store.get_tombstone(todo.id) is not None
        op = oplog.last_undoable()
        assert op.operation_type == OperationType.DELETE
        assert op.new_state is None

    def test_delete_missing(self, service, oplog):
        """Test deleting an unknown id writes no history."""
        with pytest.raises(NotFoundError):
            service.delete_todo("missing")
        assert oplog.last_undoable() is None


class TestCategoryCommands:
    """Tests for category commands."""

    def test_add_duplicate_name(self, service):
        """Test names are unique regardless of case."""
        service.add_category("Work")
        with pytest.raises(PreconditionError):
            service.add_category("work")

    def test_get_or_create(self, service, store):
        """Test an existing category is reused."""
        work = service.get_or_create_category("Work", is_ai_generated=True)
        again = service.get_or_create_category("Work")

        assert again.id == work.id
        assert work.is_ai_generated
        assert len(store.list_categories()) == 1

    def test_rename(self, service, oplog):
        """Test rename logs an UPDATE entry."""
        work = service.add_category("Work")
        renamed = service.rename_category(work.id, "Office", color="#ff0000")

        assert renamed.name == "Office"
        assert renamed.color == "#ff0000"
        assert oplog.last_undoable().operation_type == OperationType.UPDATE

    def test_rename_clash(self, service):
        """Test renaming onto another category's name."""
        work = service.add_category("Work")
        service.add_category("Home")
        with pytest.raises(PreconditionError):
            service.rename_category(work.id, "Home")

    def test_delete_in_use(self, service, store):
        """Test categories with todos cannot be deleted."""
        work = service.add_category("Work")
        service.add_todo("Report", category_id=work.id)

        with pytest.raises(PreconditionError):
            service.delete_category(work.id)
        assert store.get_category(work.id) is not None

    def test_delete_unused(self, service, store):
        """Test deleting an unused category tombstones it."""
        work = service.add_category("Work")
        service.delete_category(work.id)
        assert store.get_category(work.id) is None
        assert store.get_tombstone(work.id) is not None


class TestBatchCommands:
    """Tests for commands over several todos."""

    def test_batch_complete_logs_each(self, service, store, oplog):
        """Test each todo gets its own COMPLETE entry."""
        first = service.add_todo("First")
        second = service.add_todo("Second")

        result = service.batch_complete([first.id[:8], second.id[:8]])

        assert [t.id for t in result.changed] == [first.id, second.id]
        assert result.failed == {}
        assert all(t.is_completed for t in store.list_todos())
        recent = oplog.list_recent(2)
        assert [op.operation_type for op in recent] == [OperationType.COMPLETE] * 2

    def test_batch_skips_bad_ids(self, service, store):
        """Test unknown and already completed todos are reported, the rest applied."""
        done = service.add_todo("Done")
        service.complete_todo(done.id)
        open_todo = service.add_todo("Open")

        result = service.batch_complete(["deadbeef", done.id, open_todo.id])

        assert [t.id for t in result.changed] == [open_todo.id]
        assert set(result.failed) == {"deadbeef", done.id}
        assert store.get_todo(open_todo.id).is_completed

    def test_batch_delete_undo_step_by_step(self, service, store, oplog):
        """Test a batch delete is undone one todo at a time."""
        first = service.add_todo("First")
        second = service.add_todo("Second")
        service.batch_delete([first.id, second.id])
        engine = UndoEngine(store, oplog)

        assert engine.undo().applied
        assert store.get_todo(second.id) is not None
        assert store.get_todo(first.id) is None

        assert engine.undo().applied
        assert store.get_todo(first.id) is not None

    def test_batch_priority(self, service, store):
        """Test the priority is parsed once and applied to every todo."""
        first = service.add_todo("First")
        second = service.add_todo("Second")

        result = service.batch_set_priority([first.id, second.id], "high")

        assert len(result.changed) == 2
        assert {t.priority for t in store.list_todos()} == {Priority.HIGH}

    def test_batch_priority_invalid(self, service):
        """Test an unknown priority is rejected before any write."""
        todo = service.add_todo("First")
        with pytest.raises(PreconditionError):
            service.batch_set_priority([todo.id], "urgent")


class TestExportImport:
    """Tests for export and import."""

    def test_export_shape(self, service):
        """Test the export holds todos and categories."""
        work = service.add_category("Work")
        service.add_todo("Report", category_id=work.id)

        data = service.export_data()

        assert data["version"] == "1.0"
        assert [t["title"] for t in data["todos"]] == ["Report"]
        assert [c["name"] for c in data["categories"]] == ["Work"]

    def test_export_open_only(self, service):
        """Test completed todos can be left out."""
        done = service.add_todo("Done")
        service.complete_todo(done.id)
        service.add_todo("Open")

        data = service.export_data(include_completed=False)

        assert [t["title"] for t in data["todos"]] == ["Open"]

    def test_import_into_empty_store(self, service, store, oplog):
        """Test imported rows are created pending and logged."""
        source_store = LocalStore(":memory:")
        source_store.connect()
        source = TodoService(source_store, OperationLog(source_store))
        work = source.add_category("Work")
        source.add_todo("Report", category_id=work.id)
        data = source.export_data()
        source_store.close()

        todos, categories = service.import_data(data)

        assert (todos, categories) == (1, 1)
        imported = store.list_todos()[0]
        assert imported.title == "Report"
        assert imported.category_id == work.id
        assert imported.sync_status == SyncStatus.PENDING
        assert oplog.get_stats()["entries_by_type"] == {"create": 2}

    def test_import_merge_skips_existing(self, service, store):
        """Test existing ids are kept unless replacing."""
        todo = service.add_todo("Original")
        data = service.export_data()
        data["todos"][0]["title"] = "Imported"

        assert service.import_data(data) == (0, 0)
        assert store.get_todo(todo.id).title == "Original"

        assert service.import_data(data, replace_existing=True) == (1, 0)
        assert store.get_todo(todo.id).title == "Imported"

    def test_import_skips_taken_category_name(self, service, store):
        """Test a category named like a different local one is skipped."""
        service.add_category("Work")
        data = {"todos": [], "categories": [{"id": "c-other", "name": "work"}]}

        assert service.import_data(data) == (0, 0)
        assert store.get_category("c-other") is None

    def test_import_invalid(self, service, oplog):
        """Test malformed data is rejected without writes."""
        with pytest.raises(PreconditionError):
            service.import_data({"todos": [{"title": "no id"}]})
        assert oplog.get_stats()["total_entries"] == 0
