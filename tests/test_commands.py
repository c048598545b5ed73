# tests/test_commands.py

from __future__ import annotations

from ecobin.cli.commands import CommandRegistry, registry
from ecobin.errors import TaskNotFoundError
from ecobin.notify.notify_models import Channel
from ecobin.tasks.task_models import TaskPriority, TaskSource, TaskStatus


def test_command_registry_routes_3_and_4_params(state) -> None:
    reg = CommandRegistry()
    called = {"h3": 0, "h4": 0}
    notes: list[str] = []

    def h3(state, args, operator):
        called["h3"] += 1
        return f"h3 {operator} {args}"

    def h4(state, args, operator, emit):
        called["h4"] += 1
        if emit is not None:
            emit("note")
        return "h4"

    reg.register("a", h3, "a")
    reg.register("b", h4, "b", aliases=["bee"])

    assert reg.handle(state, "/a x", operator="op") == "h3 op ['x']"
    assert reg.handle(state, "/BEE y", operator="op", emit=notes.append) == "h4"
    assert called == {"h3": 1, "h4": 1}
    assert notes == ["note"]


def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")
    assert "Empty command" in (reg.handle(state, "/") or "")


def test_domain_errors_become_replies(state) -> None:
    reg = CommandRegistry()

    def boom(state, args, operator):
        raise TaskNotFoundError(42)

    reg.register("boom", boom, "boom")
    reply = reg.handle(state, "/boom") or ""
    assert reply.startswith("Error:")
    assert "42" in reply


def test_help_lists_registered_commands(state) -> None:
    reply = registry.handle(state, "/help") or ""
    for name in ("/reading", "/task", "/assign", "/retry", "/modem"):
        assert name in reply


def test_reading_opens_one_automatic_task(state) -> None:
    first = registry.handle(state, "/reading bin7 91 4.2 90 North Gate") or ""
    assert "Automatic task #" in first

    again = registry.handle(state, "/reading bin7 92") or ""
    assert "already open" in again

    low = registry.handle(state, "/reading bin8 40") or ""
    assert "below threshold" in low

    tasks = state.lifecycle.list_tasks(bin_id="bin7")
    assert len(tasks) == 1
    assert tasks[0].source is TaskSource.AUTOMATIC
    assert tasks[0].priority is TaskPriority.HIGH
    assert tasks[0].bin_location == "North Gate"


def test_reading_rejects_bad_numbers(state) -> None:
    assert "must be numbers" in (registry.handle(state, "/reading bin1 full") or "")
    assert "Invalid reading" in (registry.handle(state, "/reading bin1 140") or "")
    assert "Usage" in (registry.handle(state, "/reading bin1") or "")


def test_manual_task_with_staff_goes_in_progress(state) -> None:
    reply = registry.handle(state, "/task new bin1 high j1 Central Plaza | Lid is stuck", operator="admin") or ""
    assert reply.startswith("Manual task created.")

    task = state.lifecycle.list_tasks(bin_id="bin1")[0]
    assert task.status is TaskStatus.IN_PROGRESS
    assert task.priority is TaskPriority.HIGH
    assert task.bin_location == "Central Plaza"
    assert task.notes == "Lid is stuck"
    assert task.assigned_staff_name == "Josh Canillas"
    assert task.assigned_by == "admin"


def test_manual_task_rejects_unknown_priority(state) -> None:
    reply = registry.handle(state, "/task new bin1 urgent - Gym") or ""
    assert "Unknown priority" in reply
    assert state.lifecycle.list_tasks() == []


def test_assign_then_bad_transition_is_reported(state) -> None:
    task = state.lifecycle.create_manual(bin_id="bin2", bin_location="Gym")

    ok = registry.handle(state, f"/assign {task.id} j1", operator="admin") or ""
    assert "assigned to Josh Canillas" in ok

    again = registry.handle(state, f"/assign #{task.id} j1") or ""
    assert again.startswith("Error:")
    assert state.lifecycle.get(task.id).assigned_staff_id == "j1"


def test_assign_to_inactive_staff_is_refused(state) -> None:
    task = state.lifecycle.create_manual(bin_id="bin3", bin_location="Gym")
    reply = registry.handle(state, f"/assign {task.id} j2") or ""
    assert reply.startswith("Error:")
    assert state.lifecycle.get(task.id).status is TaskStatus.PENDING


def test_not_a_task_id(state) -> None:
    assert (registry.handle(state, "/complete abc") or "") == "Error: not a task id: abc"


def test_tasks_filters_by_status(state) -> None:
    a = state.lifecycle.create_manual(bin_id="bin1", bin_location="A")
    b = state.lifecycle.create_manual(bin_id="bin2", bin_location="B")
    state.lifecycle.cancel(b.id)

    pending = registry.handle(state, "/tasks pending") or ""
    assert f"#{a.id} " in pending
    assert f"#{b.id} " not in pending

    assert "Unknown status" in (registry.handle(state, "/tasks open") or "")
    assert registry.handle(state, "/tasks done") == "No tasks."


def test_preview_renders_without_sending(state) -> None:
    task = state.lifecycle.create_manual(bin_id="bin1", bin_location="Central Plaza", notes="Clean bin")

    reply = registry.handle(state, f"/preview {task.id}") or ""
    assert reply.startswith("[sms, ")
    assert "Central Plaza" in reply
    assert state.delivery.list_jobs() == []


def test_jobs_lists_failures_with_reason(state) -> None:
    task = state.lifecycle.create_manual(bin_id="bin1", bin_location="Central Plaza")
    state.delivery.enqueue(task.id, Channel.SMS, "+639171234567", "text")
    state.delivery.mark_failed(task.id, Channel.SMS, "carrier_rejected", "325")

    reply = registry.handle(state, f"/jobs {task.id}") or ""
    assert "failed" in reply
    assert "reason=carrier_rejected" in reply
    assert "code=325" in reply


def test_modem_and_retry_need_a_runner(state) -> None:
    assert "disabled" in (registry.handle(state, "/modem") or "")
    assert registry.handle(state, "/retry 1") == "Notifier is not running."


def test_staff_lists_directory_by_role(state) -> None:
    reply = registry.handle(state, "/staff admin") or ""
    assert reply.startswith("a1")
    assert "Admin User [admin, active]" in reply
    assert "Josh Canillas" in (registry.handle(state, "/staff") or "")
