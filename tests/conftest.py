# tests/conftest.py

from __future__ import annotations

from datetime import timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from ecobin.config import parse_labels, parse_thresholds
from ecobin.core.ports import StaffMember
from ecobin.core.state import AppState
from ecobin.notify.composer import NotificationComposer
from ecobin.notify.delivery import DeliveryTracker
from ecobin.notify.service import NotificationService
from ecobin.tasks.lifecycle import TaskLifecycleManager
from ecobin.tasks.task_store import TaskStore
from ecobin.telemetry.monitor import TelemetryMonitor

from .fakes import FakePushSender, FakeStaffDirectory


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    A SimpleNamespace rather than the real config keeps tests isolated from the
    environment and any local .env file.
    """
    return SimpleNamespace(
        app_name="ecobin-test",
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        staff_file=tmp_path / "staff.json",
        thresholds=parse_thresholds("85:medium,90:high,95:critical"),
        band_labels=parse_labels("medium:WARNING,high:HIGH,critical:CRITICAL"),
        modem_enabled=False,
        modem_port="/dev/ttyFAKE0",
        modem_baud_rate=9600,
        modem_smsc="+639180000101",
        modem_timeout_seconds=1.0,
        modem_open_timeout_seconds=1.0,
        sms_max_segments=2,
        sms_concatenation=False,
        sms_budget=0,
        sms_country_code="63",
    )


@pytest.fixture()
def staff() -> FakeStaffDirectory:
    return FakeStaffDirectory(
        [
            StaffMember(id="j1", full_name="Josh Canillas", contact_number="0917 123 4567"),
            StaffMember(id="j2", full_name="Ana Reyes", contact_number="09181112222", status="inactive"),
            StaffMember(id="j3", full_name="Ben Cruz", contact_number=None, push_token="tok-ben"),
            StaffMember(id="a1", full_name="Admin User", contact_number="09190000000", role="admin"),
        ]
    )


@pytest.fixture()
def task_store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def tracker(settings: SimpleNamespace) -> DeliveryTracker:
    return DeliveryTracker(settings.tasks_db_path)


@pytest.fixture()
def lifecycle(task_store: TaskStore, staff: FakeStaffDirectory) -> TaskLifecycleManager:
    return TaskLifecycleManager(task_store, staff)


@pytest.fixture()
def monitor(lifecycle: TaskLifecycleManager, settings: SimpleNamespace) -> TelemetryMonitor:
    return TelemetryMonitor(lifecycle, settings.thresholds)


@pytest.fixture()
def composer(monitor: TelemetryMonitor, settings: SimpleNamespace) -> NotificationComposer:
    return NotificationComposer(
        bands=monitor.bands,
        band_labels=settings.band_labels,
        max_segments=settings.sms_max_segments,
        tz=timezone.utc,
    )


@pytest.fixture()
def push() -> FakePushSender:
    return FakePushSender()


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    task_store: TaskStore,
    tracker: DeliveryTracker,
    staff: FakeStaffDirectory,
    lifecycle: TaskLifecycleManager,
    monitor: TelemetryMonitor,
    composer: NotificationComposer,
    push: FakePushSender,
) -> AppState:
    """
    AppState wired with deterministic fakes and no background notifier.

    Real SQLite stores are kept: their behaviour is part of what is tested.
    """
    notifier = NotificationService(
        composer=composer,
        tracker=tracker,
        lifecycle=lifecycle,
        staff=staff,
        push=push,
    )
    return AppState(
        settings=settings,
        task_store=task_store,
        delivery=tracker,
        staff=staff,  # type: ignore[arg-type]
        lifecycle=lifecycle,
        monitor=monitor,
        composer=composer,
        notifier=notifier,
    )
