# tests/test_dispatcher.py

from __future__ import annotations

import asyncio

import pytest

from ecobin.connectors.modem_connector import _run_notifier
from ecobin.errors import ModemNotReadyError, ModemSendError
from ecobin.modem.dispatcher import ModemDispatcher
from ecobin.modem.transport import ModemTransport, SessionState

from .fakes import FakeAtPort, err

SMSC = "+639180000101"


async def connected(port: FakeAtPort) -> ModemDispatcher:
    d = ModemDispatcher(ModemTransport(port, timeout_s=1.0))
    d.start()
    await d.connect("/dev/ttyFAKE0", 9600, SMSC)
    return d


@pytest.mark.asyncio
async def test_exchanges_never_overlap_and_keep_order() -> None:
    port = FakeAtPort(delay=0.01)
    d = await connected(port)

    numbers = [f"+63917000000{i}" for i in range(8)]
    await asyncio.gather(
        *(d.send_sms(n, "Empty now") for n in numbers),
        d.diagnose(),
        d.diagnose(),
    )

    assert port.max_in_flight == 1
    assert [m[0] for m in port.sms] == numbers
    await d.stop()


@pytest.mark.asyncio
async def test_event_loop_stays_responsive_during_exchange() -> None:
    port = FakeAtPort(delay=0.2)
    d = await connected(port)

    ticks = 0

    async def ticker() -> None:
        nonlocal ticks
        while True:
            await asyncio.sleep(0.01)
            ticks += 1

    tick_task = asyncio.create_task(ticker())
    await d.send_sms("+639171234567", "Empty now")
    tick_task.cancel()

    assert ticks >= 5
    await d.stop()


@pytest.mark.asyncio
async def test_errors_reach_the_caller_and_worker_survives() -> None:
    port = FakeAtPort(sms_replies=[err("+CMS ERROR: 330")])
    d = await connected(port)

    with pytest.raises(ModemSendError) as exc:
        await d.send_sms("+639171234567", "Empty now")
    assert exc.value.diagnosis == "smsc_mismatch"

    # The session is failed; the worker still answers and refuses further sends.
    with pytest.raises(ModemNotReadyError) as refused:
        await d.send_sms("+639171234567", "Empty now")
    assert refused.value.diagnosis == "smsc_mismatch"
    assert len(port.sms) == 1

    session = await d.restart("/dev/ttyFAKE0", 9600, SMSC)
    assert session.state is SessionState.READY
    result = await d.send_sms("+639171234567", "Empty now")
    assert result.segments == 1
    await d.stop()


@pytest.mark.asyncio
async def test_stop_finishes_in_flight_fails_queued_and_closes() -> None:
    port = FakeAtPort(delay=0.1)
    d = await connected(port)

    first = asyncio.create_task(d.send_sms("+639170000001", "one"))
    await asyncio.sleep(0.03)  # worker has picked up the first job
    second = asyncio.create_task(d.send_sms("+639170000002", "two"))
    third = asyncio.create_task(d.send_sms("+639170000003", "three"))
    await asyncio.sleep(0)

    await d.stop()

    assert (await first).segments == 1
    with pytest.raises(ModemNotReadyError):
        await second
    with pytest.raises(ModemNotReadyError):
        await third
    assert [m[1] for m in port.sms] == ["one"]
    assert port.closed == 1
    assert d.transport.state is SessionState.CLOSED

    with pytest.raises(ModemNotReadyError):
        await d.send_sms("+639170000004", "four")


@pytest.mark.asyncio
async def test_restart_reopens_session() -> None:
    port = FakeAtPort()
    d = await connected(port)

    session = await d.restart("/dev/ttyFAKE0", 9600, SMSC)

    assert session.state is SessionState.READY
    assert port.closed == 1
    assert len(port.opened) == 2
    await d.stop()


@pytest.mark.asyncio
async def test_notifier_keeps_running_when_modem_settings_are_bad(state) -> None:
    port = FakeAtPort(open_error=ValueError("Not a valid baudrate: -5"))
    state.dispatcher = ModemDispatcher(ModemTransport(port, timeout_s=1.0))
    state.settings.modem_baud_rate = -5
    stop_event = asyncio.Event()

    runner = asyncio.create_task(_run_notifier(state, stop_event))
    await asyncio.sleep(0.05)

    assert not runner.done()
    assert state.dispatcher.transport.state is SessionState.FAILED
    assert state.dispatcher.transport.session.diagnosis == "unknown"

    stop_event.set()
    await asyncio.wait_for(runner, timeout=2.0)
    assert state.dispatcher.transport.state is SessionState.CLOSED
