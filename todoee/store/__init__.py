"""Local storage for todoee.

Provides the SQLite-backed entity store holding current-state todos and
categories, plus the side tables used by the stash, tombstones and sync
checkpoints.
"""

from .local_store import LocalStore

__all__ = ["LocalStore"]
