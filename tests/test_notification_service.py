# tests/test_notification_service.py

from __future__ import annotations

import asyncio

import pytest

from ecobin.errors import DeliveryDuplicate, TransitionError
from ecobin.modem.dispatcher import ModemDispatcher
from ecobin.modem.transport import ModemTransport
from ecobin.notify.notify_models import Channel, JobStatus
from ecobin.notify.service import NotificationService

from .fakes import FakeAtPort, FakePushSender, err, timeout


async def make_service(
    *,
    composer,
    tracker,
    lifecycle,
    staff,
    push: FakePushSender | None,
    port: FakeAtPort | None,
) -> tuple[NotificationService, ModemDispatcher | None]:
    dispatcher = None
    if port is not None:
        dispatcher = ModemDispatcher(ModemTransport(port, timeout_s=1.0))
        dispatcher.start()
        await dispatcher.connect("/dev/ttyFAKE0", 9600, "+639180000101")
    service = NotificationService(
        composer=composer,
        tracker=tracker,
        lifecycle=lifecycle,
        staff=staff,
        dispatcher=dispatcher,
        push=push,
    )
    return service, dispatcher


@pytest.fixture()
def assigned_task(lifecycle):
    task = lifecycle.create_manual(bin_id="bin1", bin_location="Central Plaza", notes="Clean bin")
    return lifecycle.assign(task.id, "j1", assigned_by="Josh Canillas")


@pytest.mark.asyncio
async def test_assignment_sends_sms_then_push(composer, tracker, lifecycle, staff, push, assigned_task) -> None:
    port = FakeAtPort()
    service, dispatcher = await make_service(
        composer=composer, tracker=tracker, lifecycle=lifecycle, staff=staff, push=push, port=port
    )

    jobs = await service.notify_assignment(assigned_task, staff.get_staff("j1"))

    assert jobs[Channel.SMS].status is JobStatus.SENT
    assert jobs[Channel.PUSH].status is JobStatus.SENT
    number, text, pdu_mode = port.sms[0]
    assert number == "+639171234567"
    assert "Central Plaza" in text and len(text) <= 160
    assert pdu_mode is False
    assert push.sent[0].recipient == "j1"
    assert push.sent[0].payload["task"]["id"] == assigned_task.id
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_duplicate_assignment_event_does_not_resend(
    composer, tracker, lifecycle, staff, push, assigned_task
) -> None:
    port = FakeAtPort()
    service, dispatcher = await make_service(
        composer=composer, tracker=tracker, lifecycle=lifecycle, staff=staff, push=push, port=port
    )
    member = staff.get_staff("j1")

    await service.notify_assignment(assigned_task, member)
    await service.notify_assignment(assigned_task, member)

    assert len(port.sms) == 1
    assert len(push.sent) == 1
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_modem_failure_is_recorded_and_task_untouched(
    composer, tracker, lifecycle, staff, push, assigned_task
) -> None:
    port = FakeAtPort(sms_replies=[err("+CMS ERROR: 325")])
    service, dispatcher = await make_service(
        composer=composer, tracker=tracker, lifecycle=lifecycle, staff=staff, push=push, port=port
    )

    jobs = await service.notify_assignment(assigned_task, staff.get_staff("j1"))

    sms = jobs[Channel.SMS]
    assert sms.status is JobStatus.FAILED
    assert sms.failure_reason == "carrier_rejected"
    assert sms.carrier_code == "325"
    # Push still goes out, assignment stands.
    assert jobs[Channel.PUSH].status is JobStatus.SENT
    assert lifecycle.get(assigned_task.id).assigned_staff_id == "j1"
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_rejection_stops_later_sends_until_restart(composer, tracker, lifecycle, staff) -> None:
    port = FakeAtPort(sms_replies=[err("+CMS ERROR: 50")])
    service, dispatcher = await make_service(
        composer=composer, tracker=tracker, lifecycle=lifecycle, staff=staff, push=None, port=port
    )
    member = staff.get_staff("j1")
    first = lifecycle.create_manual(bin_id="bin5", bin_location="Gym", staff_id="j1")
    second = lifecycle.create_manual(bin_id="bin6", bin_location="Canteen", staff_id="j1")

    await service.notify_assignment(first, member)
    jobs = await service.notify_assignment(second, member)

    assert len(port.sms) == 1
    assert jobs[Channel.SMS].status is JobStatus.FAILED
    assert jobs[Channel.SMS].failure_reason == "sim_restriction"
    await dispatcher.stop()

@pytest.mark.asyncio
async def test_timeout_is_recorded_as_failed(composer, tracker, lifecycle, staff, assigned_task) -> None:
    port = FakeAtPort(sms_replies=[timeout()])
    service, dispatcher = await make_service(
        composer=composer, tracker=tracker, lifecycle=lifecycle, staff=staff, push=None, port=port
    )

    jobs = await service.notify_assignment(assigned_task, staff.get_staff("j1"))

    assert jobs[Channel.SMS].failure_reason == "timeout"
    assert jobs[Channel.PUSH] is None
    assert len(port.sms) == 1
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_modem_disabled_records_failure(composer, tracker, lifecycle, staff, push, assigned_task) -> None:
    service, _ = await make_service(
        composer=composer, tracker=tracker, lifecycle=lifecycle, staff=staff, push=push, port=None
    )

    jobs = await service.notify_assignment(assigned_task, staff.get_staff("j1"))

    assert jobs[Channel.SMS].status is JobStatus.FAILED
    assert jobs[Channel.SMS].failure_reason == "modem_disabled"


@pytest.mark.asyncio
async def test_staff_without_number_gets_push_only(composer, tracker, lifecycle, staff, push) -> None:
    task = lifecycle.create_manual(bin_id="bin2", bin_location="Gym", staff_id="j3")
    port = FakeAtPort()
    service, dispatcher = await make_service(
        composer=composer, tracker=tracker, lifecycle=lifecycle, staff=staff, push=push, port=port
    )

    jobs = await service.notify_assignment(task, staff.get_staff("j3"))

    assert jobs[Channel.SMS] is None
    assert port.sms == []
    assert push.sent[0].recipient == "tok-ben"
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_push_failure_is_contained(composer, tracker, lifecycle, staff, assigned_task) -> None:
    push = FakePushSender(fail_with=RuntimeError("push backend down"))
    port = FakeAtPort()
    service, dispatcher = await make_service(
        composer=composer, tracker=tracker, lifecycle=lifecycle, staff=staff, push=push, port=port
    )

    jobs = await service.notify_assignment(assigned_task, staff.get_staff("j1"))

    assert jobs[Channel.SMS].status is JobStatus.SENT
    assert jobs[Channel.PUSH].status is JobStatus.FAILED
    assert "push backend down" in jobs[Channel.PUSH].failure_reason
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_retry_only_after_failure(composer, tracker, lifecycle, staff, assigned_task) -> None:
    port = FakeAtPort(sms_replies=[err("+CMS ERROR: 331")])
    service, dispatcher = await make_service(
        composer=composer, tracker=tracker, lifecycle=lifecycle, staff=staff, push=None, port=port
    )
    await service.notify_assignment(assigned_task, staff.get_staff("j1"))

    # Operator restarts the modem before retrying.
    await dispatcher.restart("/dev/ttyFAKE0", 9600, "+639180000101")
    job = await service.retry(assigned_task.id, Channel.SMS)
    assert job.status is JobStatus.SENT
    assert job.attempt == 2
    assert len(port.sms) == 2

    with pytest.raises(DeliveryDuplicate):
        await service.retry(assigned_task.id, Channel.SMS)
    assert len(port.sms) == 2
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_retry_requires_assigned_staff(composer, tracker, lifecycle, staff) -> None:
    task = lifecycle.create_manual(bin_id="bin3", bin_location="Library")
    service, _ = await make_service(
        composer=composer, tracker=tracker, lifecycle=lifecycle, staff=staff, push=None, port=None
    )
    with pytest.raises(TransitionError):
        await service.retry(task.id, Channel.SMS)


@pytest.mark.asyncio
async def test_on_assigned_bridges_from_another_thread(composer, tracker, lifecycle, staff, push) -> None:
    port = FakeAtPort()
    service, dispatcher = await make_service(
        composer=composer, tracker=tracker, lifecycle=lifecycle, staff=staff, push=push, port=port
    )
    service.bind_loop(asyncio.get_running_loop())
    lifecycle.add_assigned_listener(service.on_assigned)

    task = lifecycle.create_manual(bin_id="bin4", bin_location="Canteen")
    # Operator console runs in its own thread.
    await asyncio.to_thread(lifecycle.assign, task.id, "j1")
    await service.drain()

    assert tracker.get(task.id, Channel.SMS).status is JobStatus.SENT
    assert tracker.get(task.id, Channel.PUSH).status is JobStatus.SENT
    await dispatcher.stop()


def test_on_assigned_without_loop_only_warns(composer, tracker, lifecycle, staff, assigned_task) -> None:
    service = NotificationService(composer=composer, tracker=tracker, lifecycle=lifecycle, staff=staff)
    service.on_assigned(assigned_task, staff.get_staff("j1"))
    assert tracker.get(assigned_task.id, Channel.SMS) is None


@pytest.mark.asyncio
async def test_push_channel_absent_records_nothing(composer, tracker, lifecycle, staff, assigned_task) -> None:
    service, _ = await make_service(
        composer=composer, tracker=tracker, lifecycle=lifecycle, staff=staff, push=None, port=None
    )

    assert await service.retry(assigned_task.id, Channel.PUSH) is None
    assert tracker.get(assigned_task.id, Channel.PUSH) is None
