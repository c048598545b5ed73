# src/ecobin/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (stores, staff, modem, notifier).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..modem.dispatcher import ModemDispatcher
from ..modem.serial_port import SerialAtPort
from ..modem.transport import ModemTransport
from ..notify.composer import NotificationComposer
from ..notify.delivery import DeliveryTracker
from ..notify.push import LoggingPushSender
from ..notify.service import NotificationService
from ..staff.directory import JsonStaffDirectory
from ..tasks.lifecycle import TaskLifecycleManager
from ..tasks.task_store import TaskStore
from ..telemetry.monitor import TelemetryMonitor

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.staff_file.parent.mkdir(parents=True, exist_ok=True)


def build_dispatcher(settings) -> ModemDispatcher | None:
    if not settings.modem_enabled:
        return None
    transport = ModemTransport(
        SerialAtPort(),
        timeout_s=settings.modem_timeout_seconds,
        open_timeout_s=settings.modem_open_timeout_seconds,
    )
    return ModemDispatcher(transport)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings(). The modem port is not opened
    here; the background runner does that on its own event loop.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    task_store = TaskStore(settings.tasks_db_path)
    # Notification jobs share the task database file.
    delivery = DeliveryTracker(settings.tasks_db_path)
    interrupted = delivery.fail_interrupted()
    if interrupted:
        logger.warning("%d notification(s) were interrupted by the last shutdown; use /retry", interrupted)

    staff = JsonStaffDirectory(settings.staff_file)
    lifecycle = TaskLifecycleManager(task_store, staff)
    monitor = TelemetryMonitor(lifecycle, settings.thresholds)

    composer = NotificationComposer(
        bands=monitor.bands,
        band_labels=settings.band_labels,
        max_segments=settings.sms_max_segments,
        concatenation=settings.sms_concatenation,
        budget=settings.sms_budget or None,
    )

    dispatcher = build_dispatcher(settings)
    notifier = NotificationService(
        composer=composer,
        tracker=delivery,
        lifecycle=lifecycle,
        staff=staff,
        dispatcher=dispatcher,
        push=LoggingPushSender(),
        country_code=settings.sms_country_code,
    )
    lifecycle.add_assigned_listener(notifier.on_assigned)

    return AppState(
        settings=settings,
        task_store=task_store,
        delivery=delivery,
        staff=staff,
        lifecycle=lifecycle,
        monitor=monitor,
        composer=composer,
        notifier=notifier,
        dispatcher=dispatcher,
    )
