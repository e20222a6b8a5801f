"""Background reminders and periodic sync."""

import asyncio
import logging
from datetime import timedelta
from typing import Callable

from .config import NotificationsConfig, SyncConfig
from .errors import StorageError, TodoeeError
from .models import Todo
from .store import LocalStore
from .sync import SyncReconciler, SyncStatus

logger = logging.getLogger(__name__)

# Upper bound for the sync backoff
MAX_SYNC_BACKOFF_SECONDS = 3600


def print_reminder(todo: Todo) -> None:
    due = todo.due_date.strftime("%Y-%m-%d %H:%M") if todo.due_date else "no due date"
    print(f"Reminder: {todo.title} ({due})", flush=True)


class ReminderDaemon:
    """Announces upcoming reminders and keeps the store in sync."""

    def __init__(
        self,
        store: LocalStore,
        notifications: NotificationsConfig,
        reconciler: SyncReconciler | None = None,
        sync_config: SyncConfig | None = None,
        notify: Callable[[Todo], None] = print_reminder,
    ):
        """Initialize the daemon.

        Args:
            store: Store to read todos from.
            notifications: Reminder window and check interval.
            reconciler: Optional reconciler for the sync loop.
            sync_config: Sync interval; required with ``reconciler``.
            notify: Called once per todo whose reminder comes due.
        """
        self._store = store
        self._notifications = notifications
        self._reconciler = reconciler
        self._sync_interval = (sync_config or SyncConfig()).interval_minutes * 60
        self._notify = notify
        self._notified: set[str] = set()
        self._tasks: list[asyncio.Task] = []
        self._running = False

    async def start(self) -> None:
        """Start the reminder and sync loops as background tasks."""
        if self._running:
            return
        self._running = True
        reminders_on = self._notifications.enabled
        sync_on = self._reconciler is not None and self._reconciler.remote is not None
        if reminders_on:
            self._tasks.append(asyncio.create_task(self._reminder_loop()))
        if sync_on:
            self._tasks.append(asyncio.create_task(self._sync_loop()))
        logger.info(
            f"Daemon started (reminders={'on' if reminders_on else 'off'}, "
            f"sync={'on' if sync_on else 'off'})"
        )

    async def stop(self) -> None:
        """Stop all loops."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Daemon stopped")

    async def run_forever(self) -> None:
        await self.start()
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.stop()

    def check_reminders(self) -> list[Todo]:
        """Announce reminders falling within the advance window.

        Each todo is announced at most once while its reminder stays in the
        window. Ids leave the notified set once the reminder has passed or the
        todo is completed.

        Returns:
            Todos announced by this call.
        """
        window = timedelta(minutes=self._notifications.advance_minutes)
        due = self._store.list_todos_with_reminders_due(window)
        self._notified &= {todo.id for todo in due}
        announced = []
        for todo in due:
            if todo.id in self._notified:
                continue
            self._notified.add(todo.id)
            self._notify(todo)
            announced.append(todo)
        return announced

    async def _reminder_loop(self) -> None:
        while self._running:
            try:
                announced = self.check_reminders()
                if announced:
                    logger.info(f"Announced {len(announced)} reminder(s)")
            except StorageError as e:
                logger.error(f"Reminder check failed: {e}")

            await asyncio.sleep(self._notifications.check_interval_seconds)

    def next_sync_delay(self) -> int:
        """Seconds until the next sync, doubled per consecutive failure."""
        failures = self._reconciler.consecutive_failures if self._reconciler else 0
        if failures == 0:
            return self._sync_interval
        return min(
            self._sync_interval * (2 ** failures),
            max(self._sync_interval, MAX_SYNC_BACKOFF_SECONDS),
        )

    async def _sync_loop(self) -> None:
        logger.info(f"Starting sync loop with {self._sync_interval}s interval")
        while self._running:
            try:
                result = await self._reconciler.sync()
                if result.status == SyncStatus.SUCCESS:
                    logger.info(
                        f"Sync: uploaded={result.uploaded}, downloaded={result.downloaded}, "
                        f"deleted={result.deleted}, conflicts={result.conflicts}"
                    )
                else:
                    logger.warning(f"Sync {result.status.value}: {result.error}")
            except TodoeeError as e:
                logger.error(f"Sync loop error: {e}")

            wait_time = self.next_sync_delay()
            if wait_time != self._sync_interval:
                logger.debug(f"Backing off sync for {wait_time}s")
            await asyncio.sleep(wait_time)
