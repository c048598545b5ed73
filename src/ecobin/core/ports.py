# src/ecobin/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
Storage, the staff directory, push delivery and the serial AT surface are all
collaborators; tests swap them for in-memory fakes.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Literal, Protocol

AtStatus = Literal["success", "error", "timeout"]


@dataclass(slots=True, frozen=True)
class StaffMember:
    id: str
    full_name: str
    contact_number: str | None = None
    role: str = "janitor"
    status: str = "active"
    push_token: str | None = None


@dataclass(slots=True, frozen=True)
class AtResponse:
    """
    Result of one AT exchange.

    data: response lines with echo and the final result code stripped.
    error: the raw final error line ("ERROR", "+CMS ERROR: 325", ...), if any.
    """

    status: AtStatus
    data: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @property
    def text(self) -> str:
        return "\n".join(self.data)


class TaskRepo(Protocol):
    def add_task(self, **fields: Any) -> int: ...
    def get_task(self, task_id: int) -> Any | None: ...
    def find_open_automatic_task(self, bin_id: str) -> Any | None: ...
    def list_tasks(
            self,
            *,
            status: Any | None = None,
            bin_id: str | None = None,
            source: Any | None = None,
            staff_id: str | None = None,
            limit: int = 100,
    ) -> list[Any]: ...
    def try_transition(
            self,
            task_id: int,
            *,
            expected: Any,
            new_status: Any,
            **fields: Any,
    ) -> bool: ...
    def count_tasks(self) -> int: ...


class StaffDirectory(Protocol):
    """Collaborator that knows who the staff are and whether they can take work."""

    def get_staff(self, staff_id: str) -> StaffMember | None: ...

    def list_staff(self, *, role: str | None = None) -> list[StaffMember]: ...


class PushSender(Protocol):
    """In-app / push channel. No size constraint on the payload."""

    def send(self, *, recipient: str, payload: dict[str, Any]) -> Awaitable[None]: ...


class AtPort(Protocol):
    """
    Serial-port collaborator speaking the AT-command protocol.

    Implementations block the calling thread; ModemTransport is the only caller and
    the dispatcher runs it off the event loop.
    """

    def open(self, port: str, baud_rate: int, *, timeout: float) -> None: ...
    def execute_command(self, command: str, *, timeout: float) -> AtResponse: ...
    def send_sms(self, number: str, message: str, *, pdu_mode: bool, timeout: float) -> AtResponse: ...
    def close(self) -> None: ...
