# tests/test_monitor.py

from __future__ import annotations

import threading
import time

import pytest

from ecobin.tasks.lifecycle import TaskLifecycleManager
from ecobin.tasks.task_models import BinReading, TaskPriority, TaskSource, TaskStatus
from ecobin.telemetry.monitor import Band, TelemetryMonitor, build_bands, classify_level


def reading(bin_id: str, level: float, **kw) -> BinReading:
    return BinReading(
        bin_id=bin_id,
        level_percent=level,
        weight_kg=kw.pop("weight_kg", 5.0),
        height_percent=kw.pop("height_percent", level),
        gps_valid=False,
        satellite_count=0,
        timestamp=time.time(),
        **kw,
    )


@pytest.mark.parametrize(
    ("level", "expected"),
    [
        (0, None),
        (84.9, None),
        (85, TaskPriority.MEDIUM),
        (89.99, TaskPriority.MEDIUM),
        (90, TaskPriority.HIGH),
        (94.5, TaskPriority.HIGH),
        (95, TaskPriority.CRITICAL),
        (100, TaskPriority.CRITICAL),
    ],
)
def test_band_mapping(monitor: TelemetryMonitor, level: float, expected) -> None:
    assert monitor.classify(level) == expected


def test_bands_must_not_decrease() -> None:
    with pytest.raises(ValueError):
        build_bands([(85, "high"), (95, "medium")])
    bands = build_bands([(95, "critical"), (85, "medium")])
    assert [b.threshold for b in bands] == [85, 95]
    assert classify_level(90, bands) is TaskPriority.MEDIUM


def test_below_threshold_creates_nothing(monitor: TelemetryMonitor, lifecycle: TaskLifecycleManager) -> None:
    assert monitor.on_reading(reading("bin1", 60)) is None
    assert lifecycle.list_tasks() == []


def test_repeated_crossings_open_one_task(monitor: TelemetryMonitor, lifecycle: TaskLifecycleManager) -> None:
    first = monitor.on_reading(reading("bin1", 86, location="Central Plaza"))
    assert first is not None
    assert monitor.on_reading(reading("bin1", 88)) is None
    assert monitor.on_reading(reading("bin1", 92)) is None

    tasks = lifecycle.list_tasks(bin_id="bin1")
    assert len(tasks) == 1
    task = tasks[0]
    assert task.id == first
    assert task.source is TaskSource.AUTOMATIC
    assert task.status is TaskStatus.PENDING
    assert task.bin_location == "Central Plaza"
    # 92% reached the high band: priority raised, note recorded, snapshot refreshed.
    assert task.priority is TaskPriority.HIGH
    assert "Escalated to high" in (task.notes or "")
    assert task.level_percent == 92


def test_priority_never_lowered_by_later_readings(monitor: TelemetryMonitor, lifecycle: TaskLifecycleManager) -> None:
    task_id = monitor.on_reading(reading("bin1", 96))
    monitor.on_reading(reading("bin1", 86))
    assert lifecycle.get(task_id).priority is TaskPriority.CRITICAL


@pytest.mark.parametrize(
    ("level", "priority"),
    [(85, TaskPriority.MEDIUM), (90, TaskPriority.HIGH), (95, TaskPriority.CRITICAL)],
)
def test_new_task_priority_matches_band(monitor: TelemetryMonitor, lifecycle: TaskLifecycleManager, level, priority) -> None:
    task_id = monitor.on_reading(reading("bin1", level))
    assert lifecycle.get(task_id).priority is priority


def test_new_task_after_previous_is_resolved(monitor: TelemetryMonitor, lifecycle: TaskLifecycleManager) -> None:
    first = monitor.on_reading(reading("bin1", 90))
    lifecycle.assign(first, "j1")
    lifecycle.complete(first)

    second = monitor.on_reading(reading("bin1", 91))
    assert second is not None and second != first


def test_in_progress_task_still_blocks_new_one(monitor: TelemetryMonitor, lifecycle: TaskLifecycleManager) -> None:
    first = monitor.on_reading(reading("bin1", 90))
    lifecycle.assign(first, "j1")
    assert monitor.on_reading(reading("bin1", 97)) is None
    assert lifecycle.get(first).priority is TaskPriority.CRITICAL


def test_concurrent_readings_same_bin_create_one_task(
    monitor: TelemetryMonitor, lifecycle: TaskLifecycleManager
) -> None:
    results: list[int | None] = []
    barrier = threading.Barrier(8)

    def worker(level: float) -> None:
        barrier.wait()
        results.append(monitor.on_reading(reading("bin1", level)))

    threads = [threading.Thread(target=worker, args=(86 + i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    created = [r for r in results if r is not None]
    assert len(created) == 1
    assert len(lifecycle.list_tasks(bin_id="bin1")) == 1


def test_separate_monitors_on_one_store_still_dedupe(lifecycle: TaskLifecycleManager, settings) -> None:
    # Monitors keep no task state of their own; the open task is found in the store.
    a = TelemetryMonitor(lifecycle, settings.thresholds)
    b = TelemetryMonitor(lifecycle, settings.thresholds)
    assert a.on_reading(reading("bin1", 90)) is not None
    assert b.on_reading(reading("bin1", 90)) is None
    assert len(lifecycle.list_tasks(bin_id="bin1")) == 1


def test_reading_validation() -> None:
    with pytest.raises(ValueError):
        reading("bin1", 101)
    with pytest.raises(ValueError):
        reading(" ", 50)


def test_band_is_a_value_object() -> None:
    assert Band(85, TaskPriority.MEDIUM) == Band(85.0, TaskPriority.MEDIUM)
