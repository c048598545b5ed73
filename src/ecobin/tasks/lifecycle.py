# src/ecobin/tasks/lifecycle.py

from __future__ import annotations

"""
Task lifecycle state machine.

TaskLifecycleManager is the only writer of task state. Every transition is a guarded
conditional update in the store (status IN expected -> new status), so two callers
racing on the same task cannot both win.

    create  -> pending
    assign   : pending -> in_progress        (emits "assigned")
    complete : in_progress -> done
    cancel   : pending | in_progress -> cancelled   (idempotent on cancelled)
    archive  : done | cancelled -> archived         (terminal)

Errors are raised to the caller and never retried here.
"""

import logging
import time
from collections.abc import Callable

from ..core.ports import StaffDirectory, StaffMember, TaskRepo
from ..errors import StaffUnavailableError, TaskNotFoundError, TransitionError
from .task_models import BinReading, Task, TaskPriority, TaskSource, TaskStatus, UNRESOLVED_STATUSES

logger = logging.getLogger(__name__)

AssignedListener = Callable[[Task, StaffMember], None]


def _reading_fields(reading: BinReading | None) -> dict[str, object]:
    if reading is None:
        return {}
    return {
        "bin_name": reading.bin_name,
        "level_percent": float(reading.level_percent),
        "weight_kg": float(reading.weight_kg),
        "height_percent": float(reading.height_percent),
        "gps_valid": bool(reading.gps_valid),
        "latitude": reading.latitude,
        "longitude": reading.longitude,
    }


def staff_unavailable_reason(member: StaffMember | None) -> str | None:
    """Return why a staff member cannot take a task, or None if they can."""
    if member is None:
        return "not_found"
    if (member.role or "").lower() != "janitor":
        return "not_janitor"
    if (member.status or "").lower() != "active":
        return f"status_{member.status or 'unknown'}"
    return None


class TaskLifecycleManager:
    def __init__(self, store: TaskRepo, staff: StaffDirectory) -> None:
        self._store = store
        self._staff = staff
        self._assigned_listeners: list[AssignedListener] = []

    def add_assigned_listener(self, listener: AssignedListener) -> None:
        self._assigned_listeners.append(listener)

    # ---- queries ----

    def get(self, task_id: int) -> Task:
        task = self._store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        bin_id: str | None = None,
        source: TaskSource | None = None,
        staff_id: str | None = None,
        limit: int = 100,
    ) -> list[Task]:
        return self._store.list_tasks(
            status=status, bin_id=bin_id, source=source, staff_id=staff_id, limit=limit
        )

    def find_open_automatic(self, bin_id: str) -> Task | None:
        return self._store.find_open_automatic_task(bin_id)

    # ---- transitions ----

    def create(
        self,
        *,
        bin_id: str,
        bin_location: str,
        source: TaskSource,
        priority: TaskPriority,
        notes: str | None = None,
        reading: BinReading | None = None,
        bin_name: str | None = None,
        assigned_by: str | None = None,
    ) -> Task:
        """
        Entry point: a new task always starts as pending.

        Raises DedupConflict (from the store) for a second unresolved automatic task.
        """
        fields = _reading_fields(reading)
        if bin_name:
            fields["bin_name"] = bin_name

        task_id = self._store.add_task(
            bin_id=bin_id,
            bin_location=bin_location or "",
            status=TaskStatus.PENDING,
            priority=priority,
            source=source,
            notes=(notes or "").strip() or None,
            assigned_by=assigned_by,
            **fields,
        )
        logger.info(
            "Task %s created bin=%s source=%s priority=%s",
            task_id,
            bin_id,
            source.value,
            priority.value,
        )
        return self.get(task_id)

    def create_manual(
        self,
        *,
        bin_id: str,
        bin_location: str,
        priority: TaskPriority = TaskPriority.MEDIUM,
        notes: str | None = None,
        reading: BinReading | None = None,
        bin_name: str | None = None,
        staff_id: str | None = None,
        assigned_by: str | None = None,
    ) -> Task:
        """Manual task from a dashboard; optionally assigned straight away."""
        task = self.create(
            bin_id=bin_id,
            bin_location=bin_location,
            source=TaskSource.MANUAL,
            priority=priority,
            notes=notes,
            reading=reading,
            bin_name=bin_name,
            assigned_by=assigned_by,
        )
        if staff_id:
            return self.assign(task.id, staff_id, assigned_by=assigned_by)
        return task

    def assign(self, task_id: int, staff_id: str, *, assigned_by: str | None = None) -> Task:
        task = self.get(task_id)
        if task.status is not TaskStatus.PENDING:
            raise TransitionError(task_id, "assign", task.status.value)

        member = self._staff.get_staff(staff_id)
        reason = staff_unavailable_reason(member)
        if reason is not None or member is None:
            raise StaffUnavailableError(task_id, staff_id, reason or "not_found")

        fields: dict[str, object] = {
            "assigned_staff_id": member.id,
            "assigned_staff_name": member.full_name,
        }
        if assigned_by:
            fields["assigned_by"] = assigned_by

        claimed = self._store.try_transition(
            task_id,
            expected=[TaskStatus.PENDING],
            new_status=TaskStatus.IN_PROGRESS,
            **fields,
        )
        if not claimed:
            current = self.get(task_id)
            raise TransitionError(task_id, "assign", current.status.value, "changed concurrently")

        assigned = self.get(task_id)
        logger.info("Task %s -> in_progress staff=%s (%s)", task_id, member.id, member.full_name)

        for listener in list(self._assigned_listeners):
            try:
                listener(assigned, member)
            except Exception:
                # The assignment stands even if a notification hook fails.
                logger.exception("assigned listener failed task_id=%s", task_id)

        return assigned

    def complete(self, task_id: int, completion_notes: str | None = None) -> Task:
        task = self.get(task_id)
        if task.status is not TaskStatus.IN_PROGRESS:
            raise TransitionError(task_id, "complete", task.status.value)

        fields: dict[str, object] = {}
        if completion_notes and completion_notes.strip():
            fields["completion_notes"] = completion_notes.strip()

        if not self._store.try_transition(
            task_id, expected=[TaskStatus.IN_PROGRESS], new_status=TaskStatus.DONE, **fields
        ):
            current = self.get(task_id)
            raise TransitionError(task_id, "complete", current.status.value, "changed concurrently")

        logger.info("Task %s -> done", task_id)
        return self.get(task_id)

    def cancel(self, task_id: int) -> Task:
        task = self.get(task_id)
        if task.status is TaskStatus.CANCELLED:
            return task
        if not task.status.is_unresolved:
            raise TransitionError(task_id, "cancel", task.status.value)

        if not self._store.try_transition(
            task_id, expected=UNRESOLVED_STATUSES, new_status=TaskStatus.CANCELLED
        ):
            current = self.get(task_id)
            if current.status is TaskStatus.CANCELLED:
                return current
            raise TransitionError(task_id, "cancel", current.status.value, "changed concurrently")

        logger.info("Task %s -> cancelled (was %s)", task_id, task.status.value)
        return self.get(task_id)

    def archive(self, task_id: int) -> Task:
        task = self.get(task_id)
        if task.status not in (TaskStatus.DONE, TaskStatus.CANCELLED):
            detail = "resolve it first" if task.status.is_unresolved else ""
            raise TransitionError(task_id, "archive", task.status.value, detail)

        if not self._store.try_transition(
            task_id,
            expected=[TaskStatus.DONE, TaskStatus.CANCELLED],
            new_status=TaskStatus.ARCHIVED,
            archived_at=time.time(),
        ):
            current = self.get(task_id)
            raise TransitionError(task_id, "archive", current.status.value, "changed concurrently")

        logger.info("Task %s -> archived", task_id)
        return self.get(task_id)

    def escalate(
        self,
        task_id: int,
        priority: TaskPriority,
        note: str,
        reading: BinReading | None = None,
    ) -> Task:
        """
        Record a band escalation on an unresolved task.

        Priority only ever goes up; the note is appended to the task notes and the
        reading snapshot is refreshed.
        """
        task = self.get(task_id)
        if not task.status.is_unresolved:
            raise TransitionError(task_id, "escalate", task.status.value)

        fields: dict[str, object] = {
            k: v for k, v in _reading_fields(reading).items() if v is not None
        }
        if priority.rank > task.priority.rank:
            fields["priority"] = priority
        note = note.strip()
        if note:
            fields["notes"] = f"{task.notes} | {note}" if task.notes else note

        # Keep the current status; the conditional update only guards against a
        # concurrent resolve.
        if fields and not self._store.try_transition(
            task_id, expected=[task.status], new_status=task.status, **fields
        ):
            current = self.get(task_id)
            raise TransitionError(task_id, "escalate", current.status.value, "changed concurrently")

        logger.info("Task %s escalated priority=%s", task_id, fields.get("priority", task.priority))
        return self.get(task_id)
