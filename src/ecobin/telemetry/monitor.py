# src/ecobin/telemetry/monitor.py

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass

from ..errors import DedupConflict
from ..tasks.lifecycle import TaskLifecycleManager
from ..tasks.task_models import BinReading, TaskPriority, TaskSource

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Band:
    threshold: float
    priority: TaskPriority


def build_bands(thresholds: Sequence[tuple[float, str]]) -> tuple[Band, ...]:
    """
    Turn configured (threshold, priority) pairs into bands sorted by threshold.

    A higher threshold must never map to a lower priority.
    """
    bands = sorted(
        (Band(float(value), TaskPriority(label)) for value, label in thresholds),
        key=lambda b: b.threshold,
    )
    if not bands:
        raise ValueError("at least one band is required")
    for lower, upper in zip(bands, bands[1:]):
        if upper.priority.rank < lower.priority.rank:
            raise ValueError(
                f"band {upper.threshold} ({upper.priority}) ranks below "
                f"band {lower.threshold} ({lower.priority})"
            )
    return tuple(bands)


def classify_level(level_percent: float, bands: Sequence[Band]) -> TaskPriority | None:
    """Return the priority of the highest band reached, or None below the lowest band."""
    hit: TaskPriority | None = None
    for band in bands:
        if level_percent >= band.threshold:
            hit = band.priority
        else:
            break
    return hit


class TelemetryMonitor:
    """
    Consumes bin readings and opens automatic tasks.

    One unresolved automatic task per bin: further threshold crossings on the same
    bin only escalate the open task (priority up, note appended).

    The existence check and the create run under a per-bin lock; readings for
    different bins do not wait on each other. The store's unique index backs this
    up for writers in other processes.
    """

    def __init__(
        self,
        lifecycle: TaskLifecycleManager,
        thresholds: Sequence[tuple[float, str]],
        *,
        default_location: str = "",
    ) -> None:
        self._lifecycle = lifecycle
        self._bands = build_bands(thresholds)
        self._default_location = default_location
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def bands(self) -> tuple[Band, ...]:
        return self._bands

    def _lock_for(self, bin_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(bin_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[bin_id] = lock
            return lock

    def classify(self, level_percent: float) -> TaskPriority | None:
        return classify_level(level_percent, self._bands)

    def on_reading(self, reading: BinReading) -> int | None:
        """
        Returns the id of a newly created task, or None when nothing was created
        (below threshold, or an automatic task is already open for the bin).
        """
        priority = self.classify(reading.level_percent)
        if priority is None:
            logger.debug("bin=%s level=%.1f below threshold", reading.bin_id, reading.level_percent)
            return None

        with self._lock_for(reading.bin_id):
            existing = self._lifecycle.find_open_automatic(reading.bin_id)
            if existing is not None:
                self._record_repeat(existing.id, existing.priority, priority, reading)
                return None

            try:
                task = self._lifecycle.create(
                    bin_id=reading.bin_id,
                    bin_location=reading.location or self._default_location,
                    source=TaskSource.AUTOMATIC,
                    priority=priority,
                    notes=(
                        f"Automatic task: level {reading.level_percent:g}% "
                        f"reached {priority.value} band"
                    ),
                    reading=reading,
                )
            except DedupConflict as e:
                # Another process won the insert.
                logger.info("Dedup: %s", e)
                return None

        logger.info(
            "Automatic task %s opened bin=%s level=%.1f priority=%s",
            task.id,
            reading.bin_id,
            reading.level_percent,
            priority.value,
        )
        return task.id

    def _record_repeat(
        self,
        task_id: int,
        current: TaskPriority,
        reached: TaskPriority,
        reading: BinReading,
    ) -> None:
        if reached.rank <= current.rank:
            logger.debug(
                "Dedup: bin=%s already has open task %s (level=%.1f)",
                reading.bin_id,
                task_id,
                reading.level_percent,
            )
            return

        self._lifecycle.escalate(
            task_id,
            reached,
            f"Escalated to {reached.value}: level {reading.level_percent:g}%",
            reading=reading,
        )
