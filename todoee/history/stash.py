"""Stash: park an entity outside the entity tables and bring it back later."""

import logging

from ..errors import AlreadyStashedError, NotFoundError, PreconditionError
from ..models import Entity, EntityType, OperationType, Snapshot, StashEntry, restamp
from ..store import LocalStore
from .operation_log import OperationLog

logger = logging.getLogger(__name__)


class StashManager:
    """LIFO stash keyed by entity id.

    Stashing is local: the entity leaves the entity tables without a
    tombstone, and sync leaves stashed ids alone until they are popped.
    """

    def __init__(self, store: LocalStore, oplog: OperationLog):
        self.store = store
        self.oplog = oplog

    def push(self, entity_id: str, message: str | None = None) -> StashEntry:
        """Move an entity into the stash.

        Args:
            entity_id: Full id of a todo or category.
            message: Optional label shown by ``list``.

        Returns:
            The new stash entry.

        Raises:
            AlreadyStashedError: The id already has a stash entry.
            NotFoundError: No entity with this id exists.
            PreconditionError: The entity is a category still used by todos.
        """
        with self.store.transaction():
            if self.store.is_stashed(entity_id):
                raise AlreadyStashedError(entity_id)
            entity = self.store.find_entity(entity_id)
            if entity is None:
                raise NotFoundError("entity", entity_id)
            if entity.entity_type == EntityType.CATEGORY:
                in_use = self.store.count_todos_in_category(entity_id)
                if in_use:
                    raise PreconditionError(
                        f"Category '{entity.name}' is used by {in_use} todo(s)"
                    )

            entry = StashEntry(
                entity_id=entity.id,
                entity_type=entity.entity_type,
                snapshot=Snapshot.of(entity),
                message=message,
            )
            self.store.insert_stash_entry(entry)
            self.store.delete_entity(entity.entity_type, entity.id, tombstone=False)
            self.oplog.record(OperationType.STASH, entity, None, message=message)

        logger.info(f"Stashed {entity.entity_type.value} {entity.id[:8]}")
        return entry

    def pop(self) -> Entity | None:
        """Restore the newest stash entry.

        Returns:
            The restored entity, or None when the stash is empty.
        """
        with self.store.transaction():
            entry = self.store.latest_stash_entry()
            if entry is None:
                return None

            entity = restamp(entry.entity)
            self.store.insert_entity(entity)
            self.store.delete_stash_entry(entry.entity_id)
            self.oplog.record(OperationType.UNSTASH, None, entity, message=entry.message)

        logger.info(f"Restored {entity.entity_type.value} {entity.id[:8]} from stash")
        return entity

    def list(self) -> list[StashEntry]:
        """Stash entries, newest first."""
        return self.store.list_stash_entries()

    def clear(self) -> int:
        """Drop every stash entry. Not recorded in the history."""
        count = self.store.clear_stash_entries()
        if count:
            logger.info(f"Cleared {count} stash entries")
        return count
