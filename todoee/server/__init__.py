"""Reference remote store served over HTTP."""

from .app import create_app
from .remote_db import RemoteDB

__all__ = ["RemoteDB", "create_app"]
