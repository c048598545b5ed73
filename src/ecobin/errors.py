# src/ecobin/errors.py

"""
Error taxonomy.

Task / telemetry errors are raised synchronously to the caller.
Modem errors are caught by the notification layer, logged with their diagnosis and
recorded as a failed notification job.
"""

from __future__ import annotations


class EcobinError(Exception):
    """Base class for all domain errors."""


class DedupConflict(EcobinError):
    """An unresolved automatic task already exists for the bin (a no-op signal)."""

    def __init__(self, bin_id: str, existing_task_id: int) -> None:
        super().__init__(f"automatic task {existing_task_id} already open for bin {bin_id}")
        self.bin_id = bin_id
        self.existing_task_id = existing_task_id


class TaskNotFoundError(EcobinError):
    def __init__(self, task_id: int) -> None:
        super().__init__(f"task {task_id} not found")
        self.task_id = task_id


class TransitionError(EcobinError):
    """Invalid task state transition. Never auto-corrected."""

    def __init__(self, task_id: int, action: str, current: str, detail: str = "") -> None:
        msg = f"cannot {action} task {task_id} in status {current}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
        self.task_id = task_id
        self.action = action
        self.current = current


class StaffUnavailableError(TransitionError):
    def __init__(self, task_id: int, staff_id: str, reason: str) -> None:
        super().__init__(task_id, "assign", "pending", f"staff {staff_id} unavailable ({reason})")
        self.staff_id = staff_id
        self.reason = reason


class ComposerOverflowError(EcobinError):
    """The SMS budget is configured below the minimum viable message length."""


class ModemError(EcobinError):
    """Base class for hardware / AT protocol failures."""

    def __init__(self, message: str, *, diagnosis: str | None = None) -> None:
        super().__init__(message)
        self.diagnosis = diagnosis or message


class ModemOpenError(ModemError):
    def __init__(self, port: str, cause: str, detail: str = "") -> None:
        msg = f"cannot open {port}: {cause}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg, diagnosis=cause)
        self.port = port
        self.cause = cause


class ModemInitError(ModemError):
    pass


class SmscMismatchError(ModemInitError):
    """The modem reports a different SMS center than the one configured."""

    def __init__(self, expected: str, actual: str | None) -> None:
        super().__init__(
            f"SMSC mismatch: configured {expected}, modem reports {actual or 'nothing'}",
            diagnosis="smsc_mismatch",
        )
        self.expected = expected
        self.actual = actual


class ModemTimeoutError(ModemError):
    def __init__(self, command: str, timeout_s: float) -> None:
        super().__init__(f"no response to {command} within {timeout_s:.1f}s", diagnosis="timeout")
        self.command = command
        self.timeout_s = timeout_s


class ModemSendError(ModemError):
    def __init__(
        self,
        message: str,
        *,
        carrier_code: str | None = None,
        diagnosis: str | None = None,
    ) -> None:
        super().__init__(message, diagnosis=diagnosis)
        self.carrier_code = carrier_code


class ModemNotReadyError(ModemError):
    pass


class DeliveryDuplicate(EcobinError):
    def __init__(self, task_id: int, channel: str) -> None:
        super().__init__(f"notification for task {task_id} on {channel} already sent")
        self.task_id = task_id
        self.channel = channel
