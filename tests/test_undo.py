"""Tests for the undo/redo engine."""

import pytest
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import patch

from todoee.errors import StorageError
from todoee.history import OperationLog, StashManager, UndoEngine, UndoStatus
from todoee.models import Priority, SyncStatus, Todo
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


@pytest.fixture
def engine(store, oplog):
    return UndoEngine(store, oplog)


@pytest.fixture
def stash(store, oplog):
    return StashManager(store, oplog)


def _contents(store):
    todos = {t.id: t.content() for t in store.list_todos()}
    categories = {c.id: c.content() for c in store.list_categories()}
    return todos, categories


class TestUndoBasics:
    """Tests for empty-state and simple inversions."""

    def test_nothing_to_undo(self, engine):
        """Test an empty log reports NOTHING."""
        result = engine.undo()
        assert result.status == UndoStatus.NOTHING
        assert result.operation is None

    def test_nothing_to_redo(self, engine, service):
        """Test redo with no undone entry reports NOTHING."""
        service.add_todo("Buy milk")
        assert engine.redo().status == UndoStatus.NOTHING

    def test_create_undo_redo(self, engine, service, store):
        """Test create, undo and redo of 'Buy milk'."""
        todo = service.add_todo("Buy milk")

        result = engine.undo()
        assert result.applied
        assert store.get_todo(todo.id) is None
        assert store.get_tombstone(todo.id) is not None

        result = engine.redo()
        assert result.applied
        restored = store.get_todo(todo.id)
        assert restored.title == "Buy milk"
        assert restored.content() == todo.content()
        assert store.get_tombstone(todo.id) is None

    def test_complete_undo(self, engine, service, store):
        """Test undoing completion clears is_completed and completed_at."""
        todo = service.add_todo("Buy milk")
        service.complete_todo(todo.id)

        engine.undo()

        restored = store.get_todo(todo.id)
        assert restored.is_completed is False
        assert restored.completed_at is None

    def test_update_undo_restores_content(self, engine, service, store):
        """Test undoing an edit brings every content field back."""
        todo = service.add_todo(
            "Report",
            priority=Priority.HIGH,
            due_date=datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc),
        )
        service.edit_todo(todo.id, title="Final report", priority=Priority.LOW, due_date=None)

        engine.undo()

        assert store.get_todo(todo.id).content() == todo.content()

    def test_delete_undo_recreates(self, engine, service, store):
        """Test undoing a delete re-inserts the row and drops its tombstone."""
        todo = service.add_todo("Buy milk")
        service.delete_todo(todo.id)

        engine.undo()

        assert store.get_todo(todo.id).content() == todo.content()
        assert store.get_tombstone(todo.id) is None

    def test_undo_restamps_bookkeeping(self, engine, service, store):
        """Test restored rows are pending with a fresh updated_at."""
        todo = service.add_todo("Buy milk")
        edited = service.edit_todo(todo.id, title="Buy bread")
        store.mark_synced(todo.entity_type, todo.id)

        engine.undo()

        restored = store.get_todo(todo.id)
        assert restored.sync_status == SyncStatus.PENDING
        assert restored.updated_at >= edited.updated_at


class TestRoundTrip:
    """Tests for the undo/redo round-trip law."""

    def test_n_undos_then_n_redos(self, engine, service, store):
        """Test undoing everything empties the store and redo rebuilds it."""
        work = service.add_category("Work")
        report = service.add_todo("Report", category_id=work.id)
        milk = service.add_todo("Buy milk")
        service.edit_todo(report.id, title="Final report")
        service.complete_todo(milk.id)
        service.delete_todo(milk.id)
        final_state = _contents(store)

        mutations = 6
        for _ in range(mutations):
            assert engine.undo().applied
        assert engine.undo().status == UndoStatus.NOTHING
        assert _contents(store) == ({}, {})

        for _ in range(mutations):
            assert engine.redo().applied
        assert engine.redo().status == UndoStatus.NOTHING
        assert _contents(store) == final_state

    def test_two_steps_on_one_todo(self, engine, service, store):
        """Test redo replays create before edit after both were undone."""
        todo = service.add_todo("Buy milk")
        service.edit_todo(todo.id, title="Buy bread")

        assert engine.undo().applied
        assert engine.undo().applied
        assert store.get_todo(todo.id) is None

        first = engine.redo()
        assert first.applied
        assert first.operation.operation_type.value == "create"
        assert store.get_todo(todo.id).title == "Buy milk"

        assert engine.redo().applied
        assert store.get_todo(todo.id).title == "Buy bread"
        assert engine.redo().status == UndoStatus.NOTHING

    def test_redo_follows_undo_order(self, engine, service, store):
        """Test redo picks the last undone entry even when an older one is pending."""
        milk = service.add_todo("Buy milk")
        service.edit_todo(milk.id, title="Buy bread")
        engine.undo()
        eggs = service.add_todo("Buy eggs")
        engine.undo()

        result = engine.redo()

        assert result.applied
        assert result.operation.entity_id == eggs.id
        assert store.get_todo(eggs.id) is not None

    def test_undo_redo_undo(self, engine, service, store):
        """Test the same entry can be inverted repeatedly."""
        todo = service.add_todo("Buy milk")
        service.edit_todo(todo.id, title="Buy bread")

        engine.undo()
        engine.redo()
        engine.undo()

        assert store.get_todo(todo.id).title == "Buy milk"


class TestDrift:
    """Tests for entities changed outside the log."""

    def test_undo_after_external_delete(self, engine, service, store, oplog):
        """Test undo reports UNAVAILABLE when the entity vanished."""
        todo = service.add_todo("Buy milk")
        store.delete_todo(todo.id)

        result = engine.undo()

        assert result.status == UndoStatus.UNAVAILABLE
        assert oplog.last_undoable().entity_id == todo.id

    def test_undo_after_external_edit(self, engine, service, store, oplog):
        """Test undo refuses to overwrite an edit made outside the log."""
        todo = service.add_todo("Buy milk")
        edited = service.edit_todo(todo.id, title="Buy bread")
        store.update_todo(replace(edited, title="Buy cheese"))

        result = engine.undo()

        assert result.status == UndoStatus.UNAVAILABLE
        assert store.get_todo(todo.id).title == "Buy cheese"
        assert oplog.last_redoable() is None

    def test_redo_create_when_id_exists(self, engine, service, store):
        """Test redo of a create refuses when the id is back already."""
        todo = service.add_todo("Buy milk")
        engine.undo()
        store.create_todo(todo)

        assert engine.redo().status == UndoStatus.UNAVAILABLE

    def test_referenced_category_cannot_be_removed(self, engine, service, store):
        """Test undoing a category create fails while todos use it."""
        work = service.add_category("Work")
        # Written straight to the store, so the category create stays on top
        store.create_todo(Todo(title="Report", category_id=work.id))

        result = engine.undo()

        assert result.status == UndoStatus.UNAVAILABLE
        assert store.get_category(work.id) is not None


class TestAtomicity:
    """Tests for rollback on failure."""

    def test_failure_leaves_state_untouched(self, engine, service, store, oplog):
        """Test a storage error mid-undo rolls back entity and flag."""
        todo = service.add_todo("Buy milk")
        service.edit_todo(todo.id, title="Buy bread")

        with patch.object(oplog, "mark_undone", side_effect=StorageError("disk full")):
            with pytest.raises(StorageError):
                engine.undo()

        assert store.get_todo(todo.id).title == "Buy bread"
        assert oplog.last_redoable() is None


class TestStashUndo:
    """Tests for undoing stash and unstash entries."""

    def test_undo_stash(self, engine, service, stash, store):
        """Test undoing a stash puts the entity back and drops the entry."""
        todo = service.add_todo("WIP")
        stash.push(todo.id, message="later")

        engine.undo()

        assert store.get_todo(todo.id).content() == todo.content()
        assert store.is_stashed(todo.id) is False

    def test_redo_stash_keeps_message(self, engine, service, stash, store):
        """Test redoing a stash re-stashes with the recorded message."""
        todo = service.add_todo("WIP")
        stash.push(todo.id, message="later")
        engine.undo()

        engine.redo()

        entry = store.get_stash_entry(todo.id)
        assert entry.message == "later"
        assert store.get_todo(todo.id) is None

    def test_undo_unstash(self, engine, service, stash, store):
        """Test undoing a pop moves the entity back into the stash."""
        todo = service.add_todo("WIP")
        stash.push(todo.id)
        stash.pop()

        engine.undo()

        assert store.get_todo(todo.id) is None
        assert store.get_stash_entry(todo.id).entity.content() == todo.content()

        engine.redo()
        assert store.get_todo(todo.id) is not None
        assert store.is_stashed(todo.id) is False
