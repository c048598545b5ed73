# src/ecobin/cli/commands.py

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import cast

from ..core.state import AppState
from ..errors import EcobinError
from ..notify.notify_models import Channel
from ..tasks.task_models import BinReading, Task, TaskPriority, TaskStatus

CommandEmitter = Callable[[str], None]
CommandHandler3 = Callable[[AppState, list[str], str | None], str]
CommandHandler4 = Callable[[AppState, list[str], str | None, CommandEmitter | None], str]
CommandHandler = CommandHandler3 | CommandHandler4

logger = logging.getLogger(__name__)

# Upper bound for console commands that wait on the modem (several AT exchanges).
MODEM_WAIT_FACTOR = 6


class CommandRegistry:
    """Simple slash-command registry used by the operator console (/help, /tasks, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        operator: str | None = None,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Domain errors (unknown task, invalid transition, modem failure) and bad
        arguments become the reply text; anything else propagates to the connector.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 4

        try:
            if nparams >= 4:
                h4 = cast(CommandHandler4, handler)
                return h4(state, args, operator, emit)
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, operator)
        except (EcobinError, ValueError) as e:
            logger.info("/%s rejected: %s", name, e)
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts_local(ts: float) -> str:
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M")


def _task_id(raw: str) -> int:
    try:
        return int(raw.lstrip("#"))
    except ValueError:
        raise ValueError(f"not a task id: {raw}") from None


def _channel(args: list[str], idx: int, default: Channel = Channel.SMS) -> Channel:
    if len(args) <= idx:
        return default
    return Channel(args[idx].lower())


def _modem_wait(state: AppState) -> float:
    return float(state.settings.modem_timeout_seconds) * MODEM_WAIT_FACTOR


def format_task_line(task: Task) -> str:
    staff = f" -> {task.assigned_staff_name}" if task.assigned_staff_name else ""
    return (
        f"#{task.id} [{task.status.value}] {task.priority.value:<8} {task.source.value:<9} "
        f"{task.display_name} @ {task.bin_location or '-'} {task.level_percent:g}%{staff}"
    )


def format_task(task: Task) -> str:
    lines = [
        f"Task #{task.id} ({task.source.value}, {task.priority.value})",
        f"  Status:   {task.status.value}",
        f"  Bin:      {task.display_name} ({task.bin_id}) @ {task.bin_location or '-'}",
        f"  Level:    {task.level_percent:g}%  Weight: {task.weight_kg:g}kg  Height: {task.height_percent:g}%",
        f"  Staff:    {task.assigned_staff_name or '-'}"
        + (f" (by {task.assigned_by})" if task.assigned_by else ""),
        f"  Notes:    {task.notes or '-'}",
        f"  Created:  {_ts_local(task.created_at)}  Updated: {_ts_local(task.updated_at)}",
    ]
    if task.completion_notes:
        lines.append(f"  Done:     {task.completion_notes}")
    return "\n".join(lines)


def cmd_help(state: AppState, args: list[str], operator: str | None) -> str:
    return registry.build_help()


def cmd_reading(state: AppState, args: list[str], operator: str | None) -> str:
    """
    /reading <bin_id> <level%> [weight_kg] [height%] [location...]
    """
    if len(args) < 2:
        return "Usage: /reading <bin_id> <level%> [weight_kg] [height%] [location...]"

    try:
        level = float(args[1].rstrip("%"))
        weight = float(args[2]) if len(args) > 2 else 0.0
        height = float(args[3].rstrip("%")) if len(args) > 3 else level
    except ValueError:
        return "Level, weight and height must be numbers."

    location = " ".join(args[4:]) or None
    try:
        reading = BinReading(
            bin_id=args[0],
            level_percent=level,
            weight_kg=weight,
            height_percent=height,
            gps_valid=False,
            satellite_count=0,
            timestamp=time.time(),
            location=location,
        )
    except ValueError as e:
        return f"Invalid reading: {e}"

    task_id = state.monitor.on_reading(reading)
    if task_id is not None:
        return f"Automatic task #{task_id} opened for bin {reading.bin_id}."

    band = state.monitor.classify(level)
    if band is None:
        return f"Bin {reading.bin_id} at {level:g}%: below threshold, no task."
    existing = state.lifecycle.find_open_automatic(reading.bin_id)
    if existing is not None:
        return f"Bin {reading.bin_id} at {level:g}% ({band.value}): task #{existing.id} already open."
    return f"Bin {reading.bin_id} at {level:g}% ({band.value}): no new task."


def cmd_task(state: AppState, args: list[str], operator: str | None) -> str:
    """
    /task <id>                                            -> show a task
    /task new <bin_id> <priority> <staff_id|-> <location> [| notes]
    """
    if not args:
        return "Usage: /task <id> | /task new <bin_id> <priority> <staff_id|-> <location> [| notes]"

    if args[0].lower() != "new":
        try:
            return format_task(state.lifecycle.get(_task_id(args[0])))
        except ValueError as e:
            return str(e)

    if len(args) < 5:
        return "Usage: /task new <bin_id> <priority> <staff_id|-> <location> [| notes]"

    try:
        priority = TaskPriority(args[2].lower())
    except ValueError:
        return f"Unknown priority: {args[2]} (low, medium, high, critical)"

    staff_id = None if args[3] == "-" else args[3]
    location, _, notes = " ".join(args[4:]).partition("|")

    task = state.lifecycle.create_manual(
        bin_id=args[1],
        bin_location=location.strip(),
        priority=priority,
        notes=notes.strip() or None,
        staff_id=staff_id,
        assigned_by=operator,
    )
    return f"Manual task created.\n{format_task(task)}"


def cmd_tasks(state: AppState, args: list[str], operator: str | None) -> str:
    """/tasks [status] [bin_id]"""
    status = None
    if args:
        try:
            status = TaskStatus(args[0].lower())
        except ValueError:
            return f"Unknown status: {args[0]}"
    bin_id = args[1] if len(args) > 1 else None

    tasks = state.lifecycle.list_tasks(status=status, bin_id=bin_id, limit=50)
    if not tasks:
        return "No tasks."
    return "\n".join(format_task_line(t) for t in tasks)


def cmd_assign(state: AppState, args: list[str], operator: str | None) -> str:
    if len(args) < 2:
        return "Usage: /assign <task_id> <staff_id>"
    task = state.lifecycle.assign(_task_id(args[0]), args[1], assigned_by=operator)
    return f"Task #{task.id} assigned to {task.assigned_staff_name}. Notification queued."


def cmd_complete(state: AppState, args: list[str], operator: str | None) -> str:
    if not args:
        return "Usage: /complete <task_id> [notes...]"
    task = state.lifecycle.complete(_task_id(args[0]), " ".join(args[1:]) or None)
    return f"Task #{task.id} done."


def cmd_cancel(state: AppState, args: list[str], operator: str | None) -> str:
    if not args:
        return "Usage: /cancel <task_id>"
    task = state.lifecycle.cancel(_task_id(args[0]))
    return f"Task #{task.id} cancelled."


def cmd_archive(state: AppState, args: list[str], operator: str | None) -> str:
    if not args:
        return "Usage: /archive <task_id>"
    task = state.lifecycle.archive(_task_id(args[0]))
    return f"Task #{task.id} archived."


def cmd_preview(state: AppState, args: list[str], operator: str | None) -> str:
    """/preview <task_id> [sms|push] -> render without sending"""
    if not args:
        return "Usage: /preview <task_id> [sms|push]"
    task = state.lifecycle.get(_task_id(args[0]))
    msg = state.composer.render(task, _channel(args, 1))
    header = f"[{msg.channel.value}, {len(msg.text)} chars, {msg.segments} segment(s)]"
    return f"{header}\n{msg.text}"


def cmd_staff(state: AppState, args: list[str], operator: str | None) -> str:
    """/staff [role]"""
    members = state.staff.list_staff(role=args[0] if args else None)
    if not members:
        return "No staff."
    return "\n".join(
        f"{m.id:<8} {m.full_name} [{m.role}, {m.status}] {m.contact_number or '-'}" for m in members
    )


def cmd_jobs(state: AppState, args: list[str], operator: str | None) -> str:
    task_id = _task_id(args[0]) if args else None
    jobs = state.delivery.list_jobs(task_id=task_id, limit=30)
    if not jobs:
        return "No notification jobs."
    lines = []
    for j in jobs:
        reason = f" reason={j.failure_reason}" if j.failure_reason else ""
        code = f" code={j.carrier_code}" if j.carrier_code else ""
        lines.append(
            f"#{j.task_id} {j.channel.value:<4} {j.status.value:<6} attempt={j.attempt} "
            f"to={j.recipient}{reason}{code}"
        )
    return "\n".join(lines)


def cmd_retry(
    state: AppState,
    args: list[str],
    operator: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    """/retry <task_id> [sms|push] -> resend a failed notification"""
    if not args:
        return "Usage: /retry <task_id> [sms|push]"
    if state.runner is None:
        return "Notifier is not running."

    task_id = _task_id(args[0])
    channel = _channel(args, 1)
    if emit:
        emit(f"Retrying {channel.value} for task #{task_id}...")

    job = state.runner.call(state.notifier.retry(task_id, channel), timeout=_modem_wait(state))
    if job is None:
        return f"Task #{task_id}: no {channel.value} recipient, nothing sent."
    reason = f" ({job.failure_reason})" if job.failure_reason else ""
    return f"Task #{task_id} {channel.value}: {job.status.value}{reason}, attempt {job.attempt}."


def cmd_modem(
    state: AppState,
    args: list[str],
    operator: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    """
    /modem          -> SIM, signal, registration, SMSC
    /modem restart  -> close and reopen the session
    """
    dispatcher = state.dispatcher
    if dispatcher is None:
        return "Modem is disabled (set ECOBIN_MODEM_ENABLED=1)."
    if state.runner is None:
        return "Notifier is not running."

    settings = state.settings
    sub = args[0].lower() if args else "status"

    if sub == "restart":
        if emit:
            emit(f"Reopening modem on {settings.modem_port}...")
        session = state.runner.call(
            dispatcher.restart(settings.modem_port, settings.modem_baud_rate, settings.modem_smsc or None),
            timeout=_modem_wait(state),
        )
        return f"Modem {session.state.value} on {session.port} (SMSC {session.configured_smsc})."

    if sub != "status":
        return "Usage: /modem [status|restart]"

    status = state.runner.call(dispatcher.diagnose(), timeout=_modem_wait(state))
    signal = "-" if status.signal_strength is None else f"{status.signal_strength}/31"
    lines = [
        f"Modem: {status.state.value} on {status.port or '-'} (health: {status.health})",
        f"  SIM: {status.sim_status}  Signal: {signal}  Network: {status.registration}",
        f"  SMSC: {status.smsc or '-'}",
    ]
    if status.diagnosis:
        lines.append(f"  Last diagnosis: {status.diagnosis}")
    lines.extend(f"  ! {w}" for w in status.warnings)
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register(
    "reading", cmd_reading, help_text="Feed a reading: /reading <bin_id> <level%> [kg] [height%] [location]."
)
registry.register(
    "task", cmd_task, help_text="Show a task, or create one: /task new <bin> <priority> <staff|-> <location> [| notes]."
)
registry.register("tasks", cmd_tasks, help_text="List tasks: /tasks [status] [bin_id].")
registry.register("assign", cmd_assign, help_text="Assign a pending task: /assign <task_id> <staff_id>.")
registry.register("complete", cmd_complete, help_text="Mark a task done: /complete <task_id> [notes].")
registry.register("cancel", cmd_cancel, help_text="Cancel a task: /cancel <task_id>.")
registry.register("archive", cmd_archive, help_text="Archive a done/cancelled task: /archive <task_id>.")
registry.register("preview", cmd_preview, help_text="Render a notification: /preview <task_id> [sms|push].")
registry.register("staff", cmd_staff, help_text="List staff: /staff [role].")
registry.register("jobs", cmd_jobs, help_text="Notification jobs: /jobs [task_id].")
registry.register("retry", cmd_retry, help_text="Resend a failed notification: /retry <task_id> [sms|push].")
registry.register("modem", cmd_modem, help_text="Modem diagnostics: /modem [status|restart].")
