"""Tests for the operation log."""

import pytest
from datetime import timedelta

from todoee.history import OperationLog
from todoee.models import (
    EntityType,
    Operation,
    OperationType,
    Snapshot,
    Todo,
    utcnow,
)
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
    """Create an operation log on the store."""
    return OperationLog(store)


class TestOperationLogAppend:
    """Tests for appending entries."""

    def test_append_assigns_increasing_ids(self, oplog):
        """Test ids are assigned in append order."""
        first = oplog.record(OperationType.CREATE, None, Todo(title="A"))
        second = oplog.record(OperationType.CREATE, None, Todo(title="B"))
        assert first.id is not None
        assert second.id > first.id

    def test_record_roundtrip(self, oplog):
        """Test a stored entry reads back with its snapshots."""
        before = Todo(title="Buy milk")
        after = Todo(title="Buy oat milk", id=before.id)
        op = oplog.record(OperationType.UPDATE, before, after)

        stored = oplog.get(op.id)
        assert stored.operation_type == OperationType.UPDATE
        assert stored.entity_type == EntityType.TODO
        assert stored.entity_id == before.id
        assert stored.previous_state.decode() == before
        assert stored.new_state.decode() == after
        assert stored.undone is False

    def test_record_keeps_message(self, oplog):
        """Test the stash label is stored with the entry."""
        todo = Todo(title="WIP")
        op = oplog.record(OperationType.STASH, todo, None, message="later")
        assert oplog.get(op.id).message == "later"

    def test_get_missing(self, oplog):
        """Test get of an unknown id."""
        assert oplog.get(999) is None


class TestOperationLogOrdering:
    """Tests for undo/redo stack ordering."""

    def test_last_undoable_is_newest(self, oplog):
        """Test the newest active entry is returned."""
        oplog.record(OperationType.CREATE, None, Todo(title="A"))
        newest = oplog.record(OperationType.CREATE, None, Todo(title="B"))
        assert oplog.last_undoable().id == newest.id

    def test_equal_timestamps_break_ties_by_id(self, oplog):
        """Test entries in the same clock tick order by id."""
        now = utcnow()
        ops = []
        for title in ("A", "B"):
            todo = Todo(title=title)
            ops.append(
                oplog.append(
                    Operation(
                        operation_type=OperationType.CREATE,
                        entity_type=EntityType.TODO,
                        entity_id=todo.id,
                        new_state=Snapshot.of(todo),
                        created_at=now,
                    )
                )
            )
        assert oplog.last_undoable().id == ops[1].id

    def test_mark_undone_moves_between_stacks(self, oplog):
        """Test flipping the flag changes undoable and redoable entries."""
        first = oplog.record(OperationType.CREATE, None, Todo(title="A"))
        second = oplog.record(OperationType.CREATE, None, Todo(title="B"))

        oplog.mark_undone(second.id)
        assert oplog.last_undoable().id == first.id
        assert oplog.last_redoable().id == second.id

        oplog.mark_redone(second.id)
        assert oplog.last_redoable() is None

    def test_redoable_is_last_undone(self, oplog):
        """Test redo order follows undo order rather than creation order."""
        first = oplog.record(OperationType.CREATE, None, Todo(title="A"))
        second = oplog.record(OperationType.CREATE, None, Todo(title="B"))

        oplog.mark_undone(second.id)
        oplog.mark_undone(first.id)
        assert oplog.last_redoable().id == first.id

        oplog.mark_redone(first.id)
        assert oplog.last_redoable().id == second.id

    def test_mark_undone_twice_fails(self, oplog):
        """Test the flag cannot be flipped to the state it already has."""
        op = oplog.record(OperationType.CREATE, None, Todo(title="A"))
        oplog.mark_undone(op.id)
        with pytest.raises(ValueError):
            oplog.mark_undone(op.id)

    def test_empty_log(self, oplog):
        """Test an empty log has nothing to undo or redo."""
        assert oplog.last_undoable() is None
        assert oplog.last_redoable() is None


class TestOperationLogQueries:
    """Tests for history views."""

    def test_list_recent_newest_first(self, oplog):
        """Test list_recent order and limit."""
        for title in ("A", "B", "C"):
            oplog.record(OperationType.CREATE, None, Todo(title=title))

        recent = oplog.list_recent(limit=2)
        assert [op.label for op in recent] == ["C", "B"]

    def test_list_since(self, oplog):
        """Test only entries after the cutoff are returned."""
        old_todo = Todo(title="Old")
        oplog.append(
            Operation(
                operation_type=OperationType.CREATE,
                entity_type=EntityType.TODO,
                entity_id=old_todo.id,
                new_state=Snapshot.of(old_todo),
                created_at=utcnow() - timedelta(hours=48),
            )
        )
        oplog.record(OperationType.CREATE, None, Todo(title="New"))

        since = oplog.list_since(utcnow() - timedelta(hours=24))
        assert [op.label for op in since] == ["New"]


class TestOperationLogMaintenance:
    """Tests for retention and stats."""

    def _append_aged(self, oplog, days):
        todo = Todo(title=f"{days}d")
        return oplog.append(
            Operation(
                operation_type=OperationType.CREATE,
                entity_type=EntityType.TODO,
                entity_id=todo.id,
                new_state=Snapshot.of(todo),
                created_at=utcnow() - timedelta(days=days),
            )
        )

    def test_sweep_old_entries(self, oplog):
        """Test sweep deletes only entries past the threshold."""
        self._append_aged(oplog, 40)
        self._append_aged(oplog, 35)
        kept = self._append_aged(oplog, 1)

        assert oplog.count_older_than(30) == 2
        assert oplog.sweep(30) == 2
        assert [op.id for op in oplog.list_recent()] == [kept.id]

    def test_get_stats(self, oplog):
        """Test counters by type and undone state."""
        todo = Todo(title="A")
        op = oplog.record(OperationType.CREATE, None, todo)
        oplog.record(OperationType.DELETE, todo, None)
        oplog.mark_undone(op.id)

        stats = oplog.get_stats()
        assert stats["total_entries"] == 2
        assert stats["undone_entries"] == 1
        assert stats["entries_by_type"] == {"create": 1, "delete": 1}
