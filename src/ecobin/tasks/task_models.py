# src/ecobin/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    pending -> in_progress -> done -> archived
    cancel is reachable from pending/in_progress; archived is terminal.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING

    @property
    def is_unresolved(self) -> bool:
        return self in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)


UNRESOLVED_STATUSES: tuple[TaskStatus, ...] = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def from_db(cls, raw: str | None) -> TaskPriority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(raw)
        except ValueError:
            return cls.MEDIUM


_PRIORITY_RANK = {
    TaskPriority.LOW: 0,
    TaskPriority.MEDIUM: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.CRITICAL: 3,
}


class TaskSource(StrEnum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


@dataclass(slots=True, frozen=True)
class BinReading:
    """One telemetry sample from a bin. Immutable once recorded."""

    bin_id: str
    level_percent: float
    weight_kg: float
    height_percent: float
    gps_valid: bool
    satellite_count: int
    timestamp: float

    bin_name: str | None = None
    location: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    def __post_init__(self) -> None:
        if not self.bin_id or not self.bin_id.strip():
            raise ValueError("bin_id is required")
        if not 0.0 <= float(self.level_percent) <= 100.0:
            raise ValueError(f"level_percent out of range: {self.level_percent}")


@dataclass(slots=True)
class Task:
    id: int
    bin_id: str
    bin_location: str
    status: TaskStatus
    priority: TaskPriority
    source: TaskSource
    created_at: float
    updated_at: float

    assigned_staff_id: str | None = None
    assigned_staff_name: str | None = None
    notes: str | None = None

    # Snapshot of the reading the task was opened for (used when rendering messages).
    bin_name: str | None = None
    level_percent: float = 0.0
    weight_kg: float = 0.0
    height_percent: float = 0.0
    gps_valid: bool = False
    latitude: float | None = None
    longitude: float | None = None

    assigned_by: str | None = None
    completion_notes: str | None = None
    archived_at: float | None = None

    @property
    def display_name(self) -> str:
        return self.bin_name or f"Bin {self.bin_id}"
