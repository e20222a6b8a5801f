"""Domain models: entities, operations, snapshots and stash entries."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from .errors import PreconditionError, SnapshotError


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_id() -> str:
    return str(uuid.uuid4())


class Priority(Enum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @classmethod
    def parse(cls, value: "str | int | Priority") -> "Priority":
        """Accept an enum, its integer value or its name (any case)."""
        if isinstance(value, Priority):
            return value
        if isinstance(value, int):
            text = str(value)
        else:
            text = str(value).strip()
        try:
            if text.isdigit():
                return cls(int(text))
            return cls[text.upper()]
        except (KeyError, ValueError) as e:
            raise PreconditionError(f"Unknown priority: {value}") from e


class SyncStatus(Enum):
    PENDING = "pending"
    SYNCED = "synced"
    CONFLICT = "conflict"


class EntityType(Enum):
    TODO = "todo"
    CATEGORY = "category"


class OperationType(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    COMPLETE = "complete"
    UNCOMPLETE = "uncomplete"
    STASH = "stash"
    UNSTASH = "unstash"


# Fields that describe replication state rather than the entity itself
BOOKKEEPING_FIELDS = ("updated_at", "sync_status")


@dataclass
class Category:
    """A named grouping for todos."""

    name: str
    id: str = field(default_factory=new_id)
    color: str | None = None
    is_ai_generated: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    sync_status: SyncStatus = SyncStatus.PENDING

    entity_type = EntityType.CATEGORY

    @property
    def label(self) -> str:
        return self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "is_ai_generated": self.is_ai_generated,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "sync_status": self.sync_status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Category":
        return cls(
            id=data["id"],
            name=data["name"],
            color=data.get("color"),
            is_ai_generated=bool(data.get("is_ai_generated", False)),
            created_at=from_iso(data.get("created_at")) or utcnow(),
            updated_at=from_iso(data.get("updated_at")) or utcnow(),
            sync_status=SyncStatus(data.get("sync_status", "pending")),
        )

    def content(self) -> dict[str, Any]:
        return _content(self)


@dataclass
class Todo:
    """A single task."""

    title: str
    id: str = field(default_factory=new_id)
    category_id: str | None = None
    description: str | None = None
    due_date: datetime | None = None
    reminder_at: datetime | None = None
    priority: Priority = Priority.MEDIUM
    is_completed: bool = False
    completed_at: datetime | None = None
    ai_metadata: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    sync_status: SyncStatus = SyncStatus.PENDING

    entity_type = EntityType.TODO

    @property
    def label(self) -> str:
        return self.title

    def mark_complete(self) -> None:
        now = utcnow()
        self.is_completed = True
        self.completed_at = now
        self.updated_at = now
        self.sync_status = SyncStatus.PENDING

    def mark_incomplete(self) -> None:
        self.is_completed = False
        self.completed_at = None
        self.updated_at = utcnow()
        self.sync_status = SyncStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "title": self.title,
            "description": self.description,
            "due_date": to_iso(self.due_date),
            "reminder_at": to_iso(self.reminder_at),
            "priority": self.priority.value,
            "is_completed": self.is_completed,
            "completed_at": to_iso(self.completed_at),
            "ai_metadata": self.ai_metadata,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "sync_status": self.sync_status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Todo":
        return cls(
            id=data["id"],
            title=data["title"],
            category_id=data.get("category_id"),
            description=data.get("description"),
            due_date=from_iso(data.get("due_date")),
            reminder_at=from_iso(data.get("reminder_at")),
            priority=Priority(int(data.get("priority", Priority.MEDIUM.value))),
            is_completed=bool(data.get("is_completed", False)),
            completed_at=from_iso(data.get("completed_at")),
            ai_metadata=data.get("ai_metadata"),
            created_at=from_iso(data.get("created_at")) or utcnow(),
            updated_at=from_iso(data.get("updated_at")) or utcnow(),
            sync_status=SyncStatus(data.get("sync_status", "pending")),
        )

    def content(self) -> dict[str, Any]:
        return _content(self)


Entity = Union[Todo, Category]

ENTITY_CLASSES: dict[EntityType, type] = {
    EntityType.TODO: Todo,
    EntityType.CATEGORY: Category,
}


def _content(entity: Entity) -> dict[str, Any]:
    data = entity.to_dict()
    for name in BOOKKEEPING_FIELDS:
        data.pop(name, None)
    return data


def entity_from_dict(entity_type: EntityType, data: dict[str, Any]) -> Entity:
    return ENTITY_CLASSES[entity_type].from_dict(data)


def restamp(entity: Entity) -> Entity:
    """Copy of an entity marked as a fresh local change."""
    return replace(entity, updated_at=utcnow(), sync_status=SyncStatus.PENDING)


@dataclass(frozen=True)
class Snapshot:
    """Tagged envelope around a full copy of an entity.

    The tag travels with the payload so a snapshot can never be decoded
    into the wrong entity class.
    """

    entity_type: EntityType
    data: dict[str, Any]

    @classmethod
    def of(cls, entity: Entity) -> "Snapshot":
        return cls(entity_type=entity.entity_type, data=entity.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return {"entity_type": self.entity_type.value, "data": self.data}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Snapshot":
        try:
            return cls(entity_type=EntityType(raw["entity_type"]), data=raw["data"])
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotError(f"Malformed snapshot envelope: {e}") from e

    def decode(self, expected: EntityType | None = None) -> Entity:
        """Build the entity, checking the tag against ``expected``."""
        if expected is not None and self.entity_type != expected:
            raise SnapshotError(
                f"Snapshot holds a {self.entity_type.value}, "
                f"expected a {expected.value}"
            )
        try:
            return entity_from_dict(self.entity_type, self.data)
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotError(
                f"Snapshot is not a valid {self.entity_type.value}: {e}"
            ) from e

    @property
    def label(self) -> str:
        return str(self.data.get("title") or self.data.get("name") or "?")


# Which snapshots each operation type carries: (previous_state, new_state)
SNAPSHOT_SHAPE: dict[OperationType, tuple[bool, bool]] = {
    OperationType.CREATE: (False, True),
    OperationType.DELETE: (True, False),
    OperationType.UPDATE: (True, True),
    OperationType.COMPLETE: (True, True),
    OperationType.UNCOMPLETE: (True, True),
    OperationType.STASH: (True, False),
    OperationType.UNSTASH: (False, True),
}


@dataclass
class Operation:
    """One entry of the operation log."""

    operation_type: OperationType
    entity_type: EntityType
    entity_id: str
    previous_state: Snapshot | None = None
    new_state: Snapshot | None = None
    created_at: datetime = field(default_factory=utcnow)
    message: str | None = None
    undone: bool = False
    id: int | None = None

    def __post_init__(self) -> None:
        want_prev, want_new = SNAPSHOT_SHAPE[self.operation_type]
        if want_prev != (self.previous_state is not None):
            raise ValueError(
                f"{self.operation_type.value} operation "
                f"{'requires' if want_prev else 'must not have'} a previous_state"
            )
        if want_new != (self.new_state is not None):
            raise ValueError(
                f"{self.operation_type.value} operation "
                f"{'requires' if want_new else 'must not have'} a new_state"
            )
        for snap in (self.previous_state, self.new_state):
            if snap is not None and snap.entity_type != self.entity_type:
                raise ValueError("Snapshot entity type does not match operation")

    @property
    def label(self) -> str:
        snap = self.new_state or self.previous_state
        return snap.label if snap else "?"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "operation_type": self.operation_type.value,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "previous_state": self.previous_state.to_dict() if self.previous_state else None,
            "new_state": self.new_state.to_dict() if self.new_state else None,
            "created_at": to_iso(self.created_at),
            "message": self.message,
            "undone": self.undone,
        }


@dataclass
class StashEntry:
    """An entity parked outside the entity tables."""

    entity_id: str
    entity_type: EntityType
    snapshot: Snapshot
    stashed_at: datetime = field(default_factory=utcnow)
    message: str | None = None

    @property
    def entity(self) -> Entity:
        return self.snapshot.decode(self.entity_type)


@dataclass
class Tombstone:
    """Marker for a local hard delete that the remote has to learn about."""

    entity_type: EntityType
    entity_id: str
    deleted_at: datetime
    confirmed: bool = False
