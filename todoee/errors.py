"""Exception hierarchy for todoee."""


class TodoeeError(Exception):
    """Base class for all todoee errors."""


class ConfigError(TodoeeError):
    """Configuration could not be loaded or is invalid."""


class StorageError(TodoeeError):
    """The local database failed. Wraps the underlying sqlite3 error."""


class NotFoundError(TodoeeError):
    """No entity with the requested id exists."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} not found: {entity_id}")
        self.entity_type = entity_type
        self.entity_id = entity_id


class AmbiguousIdError(TodoeeError):
    """A short id prefix matches more than one entity."""

    def __init__(self, prefix: str, matches: list[str]):
        super().__init__(
            f"Ambiguous id '{prefix}' matches {len(matches)} entries: "
            + ", ".join(m[:8] for m in matches)
        )
        self.prefix = prefix
        self.matches = matches


class PreconditionError(TodoeeError):
    """A command was rejected before any write took place."""


class AlreadyStashedError(PreconditionError):
    """The entity already has a stash entry."""

    def __init__(self, entity_id: str):
        super().__init__(f"Already stashed: {entity_id}")
        self.entity_id = entity_id


class SnapshotError(TodoeeError):
    """A stored snapshot does not decode to the expected entity shape."""


class NetworkError(TodoeeError):
    """The remote store could not be reached."""


class RemoteError(TodoeeError):
    """The remote store answered with an error that retrying will not fix."""


class AiServiceError(TodoeeError):
    """The task parsing model could not be reached or failed."""


class AiParsingError(TodoeeError):
    """The task parsing model replied with something that is not a task."""
