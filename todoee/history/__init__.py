"""Operation history: log, undo/redo and stash."""

from .operation_log import OperationLog
from .stash import StashManager
from .undo import UndoEngine, UndoResult, UndoStatus

__all__ = [
    "OperationLog",
    "StashManager",
    "UndoEngine",
    "UndoResult",
    "UndoStatus",
]
