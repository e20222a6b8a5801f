"""Sync between the local store and a remote store.

Push-then-pull reconciliation with last-write-wins conflict resolution and
tombstones for local deletions.
"""

from .reconciler import SyncReconciler, SyncResult, SyncStatus
from .remote import HttpRemoteStore, PullPage, PushResult, RemoteRow, RemoteStore

__all__ = [
    "HttpRemoteStore",
    "PullPage",
    "PushResult",
    "RemoteRow",
    "RemoteStore",
    "SyncReconciler",
    "SyncResult",
    "SyncStatus",
]
