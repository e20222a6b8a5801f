"""Undo and redo on top of the operation log.

The log doubles as the undo stack: an entry with ``undone = 0`` can be
undone, an entry with ``undone = 1`` can be redone. Each step checks that the
entity still looks the way the entry expects before touching it, so edits
made outside the log are never silently overwritten.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from ..errors import PreconditionError
from ..models import (
    Entity,
    EntityType,
    Operation,
    OperationType,
    Snapshot,
    StashEntry,
    restamp,
)
from ..store import LocalStore
from .operation_log import OperationLog

logger = logging.getLogger(__name__)

# Operation types whose inverse is "overwrite with the other snapshot"
REPLACING_TYPES = (
    OperationType.UPDATE,
    OperationType.COMPLETE,
    OperationType.UNCOMPLETE,
)


class UndoStatus(Enum):
    NOTHING = "nothing"
    APPLIED = "applied"
    UNAVAILABLE = "unavailable"


@dataclass
class UndoResult:
    """Outcome of an undo or redo call."""

    status: UndoStatus
    operation: Operation | None = None
    message: str = ""

    @property
    def applied(self) -> bool:
        return self.status == UndoStatus.APPLIED


class _Unavailable(Exception):
    """Raised inside a step to roll it back and report UNAVAILABLE."""


class UndoEngine:
    """Inverts and re-applies operation log entries."""

    def __init__(self, store: LocalStore, oplog: OperationLog):
        self.store = store
        self.oplog = oplog

    def undo(self) -> UndoResult:
        """Revert the most recent active entry.

        Returns:
            NOTHING when no entry is active, UNAVAILABLE when the entity
            drifted away from the entry, otherwise APPLIED.
        """
        return self._step(redo=False)

    def redo(self) -> UndoResult:
        """Re-apply the most recently undone entry."""
        return self._step(redo=True)

    def _step(self, redo: bool) -> UndoResult:
        verb = "redo" if redo else "undo"
        try:
            with self.store.transaction():
                op = self.oplog.last_redoable() if redo else self.oplog.last_undoable()
                if op is None:
                    return UndoResult(UndoStatus.NOTHING, message=f"Nothing to {verb}")
                if redo:
                    self._forward(op)
                    self.oplog.mark_redone(op.id)
                else:
                    self._inverse(op)
                    self.oplog.mark_undone(op.id)
        except _Unavailable as e:
            logger.warning(f"Cannot {verb} op {op.id}: {e}")
            return UndoResult(UndoStatus.UNAVAILABLE, op, f"Cannot {verb}: {e}")

        logger.info(
            f"{verb.capitalize()} op {op.id}: {op.operation_type.value} "
            f"{op.entity_type.value} {op.entity_id}"
        )
        return UndoResult(
            UndoStatus.APPLIED,
            op,
            f"{verb.capitalize()}: {op.operation_type.value} {op.entity_type.value} '{op.label}'",
        )

    # ==================== Inverse / Forward ====================

    def _inverse(self, op: Operation) -> None:
        kind = op.operation_type
        if kind == OperationType.CREATE:
            self._expect_present(op, op.new_state)
            self._remove(op, tombstone=True)
        elif kind == OperationType.DELETE:
            self._expect_absent(op)
            self._reinsert(op.previous_state)
        elif kind in REPLACING_TYPES:
            self._expect_present(op, op.new_state)
            self.store.replace_entity(restamp(op.previous_state.decode(op.entity_type)))
        elif kind == OperationType.STASH:
            self._expect_absent(op, allow_stashed=True)
            self._reinsert(op.previous_state)
            self.store.delete_stash_entry(op.entity_id)
        elif kind == OperationType.UNSTASH:
            current = self._expect_present(op, op.new_state)
            self._stash(op, current)

    def _forward(self, op: Operation) -> None:
        kind = op.operation_type
        if kind == OperationType.CREATE:
            self._expect_absent(op)
            self._reinsert(op.new_state)
        elif kind == OperationType.DELETE:
            self._expect_present(op, op.previous_state)
            self._remove(op, tombstone=True)
        elif kind in REPLACING_TYPES:
            self._expect_present(op, op.previous_state)
            self.store.replace_entity(restamp(op.new_state.decode(op.entity_type)))
        elif kind == OperationType.STASH:
            current = self._expect_present(op, op.previous_state)
            self._stash(op, current)
        elif kind == OperationType.UNSTASH:
            self._expect_absent(op, allow_stashed=True)
            self._reinsert(op.new_state)
            self.store.delete_stash_entry(op.entity_id)

    # ==================== Drift Checks ====================

    def _expect_present(self, op: Operation, snapshot: Snapshot) -> Entity:
        current = self.store.get_entity(op.entity_type, op.entity_id)
        if current is None:
            raise _Unavailable(f"{op.entity_type.value} {op.entity_id[:8]} no longer exists")
        expected = snapshot.decode(op.entity_type)
        if current.content() != expected.content():
            raise _Unavailable(
                f"{op.entity_type.value} {op.entity_id[:8]} was changed outside the history"
            )
        return current

    def _expect_absent(self, op: Operation, allow_stashed: bool = False) -> None:
        if self.store.get_entity(op.entity_type, op.entity_id) is not None:
            raise _Unavailable(f"{op.entity_type.value} {op.entity_id[:8]} already exists")
        if not allow_stashed and self.store.is_stashed(op.entity_id):
            raise _Unavailable(f"{op.entity_type.value} {op.entity_id[:8]} is stashed")

    # ==================== Mutations ====================

    def _remove(self, op: Operation, tombstone: bool) -> None:
        if op.entity_type == EntityType.CATEGORY:
            in_use = self.store.count_todos_in_category(op.entity_id)
            if in_use:
                raise _Unavailable(f"category {op.entity_id[:8]} is used by {in_use} todo(s)")
        self.store.delete_entity(op.entity_type, op.entity_id, tombstone=tombstone)

    def _reinsert(self, snapshot: Snapshot) -> None:
        entity = restamp(snapshot.decode())
        try:
            self.store.insert_entity(entity)
        except PreconditionError as e:
            raise _Unavailable(str(e)) from e

    def _stash(self, op: Operation, current: Entity) -> None:
        if self.store.is_stashed(op.entity_id):
            raise _Unavailable(f"{op.entity_type.value} {op.entity_id[:8]} is already stashed")
        self._remove(op, tombstone=False)
        self.store.insert_stash_entry(
            StashEntry(
                entity_id=op.entity_id,
                entity_type=op.entity_type,
                snapshot=Snapshot.of(current),
                message=op.message,
            )
        )
