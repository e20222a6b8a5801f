"""Per-command wiring of store, history, service and sync."""

import logging
from pathlib import Path

from .config import Config
from .history import OperationLog, StashManager, UndoEngine
from .service import TodoService
from .store import LocalStore
from .sync import HttpRemoteStore, SyncReconciler

logger = logging.getLogger(__name__)


class AppContext:
    """Everything a command needs, built from one Config.

    Contexts do not share state; two of them on different database files
    can live side by side.
    """

    def __init__(self, config: Config, db_path: str | Path | None = None):
        self.config = config
        self.store = LocalStore(db_path or config.database.path)
        self.oplog = OperationLog(self.store)
        self.undo_engine = UndoEngine(self.store, self.oplog)
        self.stash = StashManager(self.store, self.oplog)
        self.service = TodoService(self.store, self.oplog)
        self._reconciler: SyncReconciler | None = None

    def open(self) -> "AppContext":
        self.store.connect()
        return self

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "AppContext":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def reconciler(self) -> SyncReconciler:
        """Reconciler for the configured remote (no remote if unset)."""
        if self._reconciler is None:
            sync = self.config.sync
            remote = None
            if sync.configured:
                remote = HttpRemoteStore(
                    sync.remote_url,
                    max_retries=sync.retry_max_attempts,
                    timeout=sync.timeout_seconds,
                )
            self._reconciler = SyncReconciler(self.store, remote, batch_size=sync.batch_size)
        return self._reconciler

    async def aclose(self) -> None:
        """Close the remote client and the store."""
        if self._reconciler is not None and self._reconciler.remote is not None:
            await self._reconciler.remote.close()
        self.close()
