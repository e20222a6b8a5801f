"""Push-then-pull reconciliation between the local store and a remote store.

A sync pass runs four phases in order: upload pending rows, propagate local
deletions, download remote changes, sweep confirmed tombstones. Each phase
commits its own work, so an interrupted pass leaves the store consistent and
the next pass picks up what is still pending.

Conflicts are resolved last-write-wins on ``updated_at``. Equal timestamps
keep the local copy.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import NetworkError, RemoteError
from ..models import Entity, EntityType, SyncStatus as RowStatus, utcnow
from ..store import LocalStore
from .remote import RemoteRow, RemoteStore

logger = logging.getLogger(__name__)

# Categories first so todos never arrive before the category they reference
ENTITY_ORDER = (EntityType.CATEGORY, EntityType.TODO)


class SyncStatus(Enum):
    """Status of a sync pass."""

    SUCCESS = "success"
    NOT_CONFIGURED = "not_configured"
    OFFLINE = "offline"  # Remote unavailable
    FAILED = "failed"


@dataclass
class SyncResult:
    """Result of a sync pass."""

    status: SyncStatus
    uploaded: int = 0
    downloaded: int = 0
    deleted: int = 0
    conflicts: int = 0
    error: str | None = None
    timestamp: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.status in (SyncStatus.SUCCESS, SyncStatus.NOT_CONFIGURED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "uploaded": self.uploaded,
            "downloaded": self.downloaded,
            "deleted": self.deleted,
            "conflicts": self.conflicts,
            "error": self.error,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class _Counters:
    uploaded: int = 0
    downloaded: int = 0
    deleted: int = 0
    conflicts: int = 0
    swept: int = 0


def checkpoint_key(entity_type: EntityType) -> str:
    return f"pull_revision:{entity_type.value}"


class SyncReconciler:
    """Reconciles the local entity tables with a remote store.

    Reads rows and sync markers straight from the entity tables; the
    operation log is never consulted or written.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore | None,
        batch_size: int = 100,
    ):
        """Initialize the reconciler.

        Args:
            store: Local store to reconcile.
            remote: Remote store, or None when sync is not configured.
            batch_size: Rows per push batch and per pulled page.
        """
        self.store = store
        self.remote = remote
        self.batch_size = batch_size
        self._last_sync: datetime | None = None
        self._consecutive_failures = 0

    async def sync(self) -> SyncResult:
        """Run one full sync pass.

        Returns:
            SyncResult with counters for the work that completed.
        """
        if self.remote is None:
            return SyncResult(
                status=SyncStatus.NOT_CONFIGURED,
                error="No remote configured; set TODOEE_REMOTE_URL",
            )

        counters = _Counters()
        try:
            await self.upload_phase(counters)
            await self.delete_phase(counters)
            await self.download_phase(counters)
            self.sweep_phase(counters)
        except NetworkError as e:
            self._consecutive_failures += 1
            logger.warning(f"Sync interrupted, remote unreachable: {e}")
            return self._result(SyncStatus.OFFLINE, counters, str(e))
        except RemoteError as e:
            self._consecutive_failures += 1
            logger.error(f"Sync failed: {e}")
            return self._result(SyncStatus.FAILED, counters, str(e))

        self._consecutive_failures = 0
        self._last_sync = utcnow()
        logger.info(
            f"Sync complete: uploaded={counters.uploaded}, "
            f"downloaded={counters.downloaded}, deleted={counters.deleted}, "
            f"conflicts={counters.conflicts}"
        )
        return self._result(SyncStatus.SUCCESS, counters)

    # ==================== Phases ====================

    async def upload_phase(self, counters: _Counters) -> None:
        """Push pending and conflicting rows in batches."""
        for entity_type in ENTITY_ORDER:
            pending = self.store.list_pending(entity_type)
            for start in range(0, len(pending), self.batch_size):
                batch = pending[start:start + self.batch_size]
                result = await self.remote.push(entity_type, batch)
                uploaded_at = {e.id: e.updated_at for e in batch}

                with self.store.transaction():
                    for entity_id in result.accepted_ids:
                        if entity_id not in uploaded_at:
                            continue
                        if self.store.mark_synced(entity_type, entity_id, uploaded_at[entity_id]):
                            counters.uploaded += 1
                        else:
                            logger.debug(f"{entity_type.value} {entity_id} changed during upload")
                    for remote_entity in result.rejected:
                        self._apply_remote(
                            RemoteRow(entity=remote_entity, deleted=False, revision=0),
                            counters,
                        )

                logger.debug(
                    f"Pushed {len(batch)} {entity_type.value} rows, "
                    f"{len(result.accepted_ids)} accepted, {len(result.rejected)} rejected"
                )

    async def delete_phase(self, counters: _Counters) -> None:
        """Send unconfirmed tombstones and record the acknowledgements."""
        for entity_type in ENTITY_ORDER:
            tombstones = self.store.list_tombstones(entity_type, confirmed=False)
            for start in range(0, len(tombstones), self.batch_size):
                batch = tombstones[start:start + self.batch_size]
                confirmed = await self.remote.delete(entity_type, batch)
                sent = {t.entity_id for t in batch}
                counters.deleted += self.store.confirm_tombstones(
                    [entity_id for entity_id in confirmed if entity_id in sent]
                )

    async def download_phase(self, counters: _Counters) -> None:
        """Page through remote changes past the stored checkpoint."""
        for entity_type in ENTITY_ORDER:
            key = checkpoint_key(entity_type)
            since = int(self.store.get_sync_state(key, "0"))
            while True:
                page = await self.remote.pull(entity_type, since, self.batch_size)
                with self.store.transaction():
                    for row in page.rows:
                        self._apply_remote(row, counters)
                    if page.revision > since:
                        self.store.set_sync_state(key, str(page.revision))
                if page.revision <= since or not page.has_more:
                    break
                since = page.revision

    def sweep_phase(self, counters: _Counters) -> None:
        """Drop tombstones the remote has confirmed."""
        counters.swept = self.store.sweep_tombstones()
        if counters.swept:
            logger.debug(f"Swept {counters.swept} confirmed tombstones")

    # ==================== Merge Rule ====================

    def _apply_remote(self, row: RemoteRow, counters: _Counters) -> None:
        """Merge one remote row into the local store."""
        remote = row.entity
        entity_type = remote.entity_type

        if self.store.is_stashed(remote.id):
            logger.debug(f"Skipping stashed {entity_type.value} {remote.id}")
            return
        if self.store.get_tombstone(remote.id) is not None:
            logger.debug(f"Skipping locally deleted {entity_type.value} {remote.id}")
            return

        local = self.store.get_entity(entity_type, remote.id)

        if row.deleted:
            if local is None:
                return
            if local.sync_status != RowStatus.SYNCED and local.updated_at > remote.updated_at:
                counters.conflicts += 1
                return
            if entity_type == EntityType.CATEGORY and self.store.count_todos_in_category(remote.id):
                # Todos still point at it; keep it and re-upload it past the deletion
                self.store.mark_conflict(entity_type, remote.id)
                counters.conflicts += 1
                return
            self.store.delete_entity(entity_type, remote.id, tombstone=False)
            counters.downloaded += 1
            return

        incoming = _as_synced(remote)
        if local is None:
            if self._name_clash(remote):
                counters.conflicts += 1
                return
            self.store.insert_entity(incoming)
            counters.downloaded += 1
            return

        if remote.updated_at > local.updated_at:
            if self._name_clash(remote):
                counters.conflicts += 1
                return
            self.store.replace_entity(incoming)
            counters.downloaded += 1
        elif local.sync_status != RowStatus.SYNCED:
            counters.conflicts += 1

    def _name_clash(self, remote: Entity) -> bool:
        """Whether a remote category's name is taken by a different local category."""
        if remote.entity_type != EntityType.CATEGORY:
            return False
        clash = self.store.get_category_by_name(remote.name)
        if clash is None or clash.id == remote.id:
            return False
        logger.warning(
            f"Remote category '{remote.name}' clashes with local {clash.id}; skipped"
        )
        return True

    def _result(self, status: SyncStatus, counters: _Counters, error: str | None = None) -> SyncResult:
        return SyncResult(
            status=status,
            uploaded=counters.uploaded,
            downloaded=counters.downloaded,
            deleted=counters.deleted,
            conflicts=counters.conflicts,
            error=error,
            timestamp=utcnow(),
        )

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def last_sync(self) -> datetime | None:
        """Get timestamp of last successful sync."""
        return self._last_sync

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics.
        """
        stats = self.store.get_stats()
        return {
            "configured": self.remote is not None,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "consecutive_failures": self._consecutive_failures,
            "pending_rows": stats["pending_sync"],
            "tombstones": stats["tombstones_count"],
            "checkpoints": {
                t.value: int(self.store.get_sync_state(checkpoint_key(t), "0"))
                for t in ENTITY_ORDER
            },
        }


def _as_synced(entity: Entity) -> Entity:
    return replace(entity, sync_status=RowStatus.SYNCED)
