# src/ecobin/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..notify.composer import NotificationComposer
from ..notify.delivery import DeliveryTracker
from ..notify.service import NotificationService
from ..staff.directory import JsonStaffDirectory
from ..tasks.lifecycle import TaskLifecycleManager
from ..tasks.task_store import TaskStore
from ..telemetry.monitor import TelemetryMonitor

if TYPE_CHECKING:
    from ..connectors.modem_connector import ModemBackgroundRunner
    from ..modem.dispatcher import ModemDispatcher


@dataclass
class AppState:
    settings: Any

    task_store: TaskStore
    delivery: DeliveryTracker
    staff: JsonStaffDirectory
    lifecycle: TaskLifecycleManager
    monitor: TelemetryMonitor
    composer: NotificationComposer
    notifier: NotificationService

    dispatcher: ModemDispatcher | None = None
    runner: ModemBackgroundRunner | None = None

    # Serializes console commands against each other.
    lock: threading.Lock = field(default_factory=threading.Lock)
