# src/ecobin/connectors/modem_connector.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

from ..core.state import AppState
from ..errors import ModemError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _run_notifier(state: AppState, stop_event: asyncio.Event) -> None:
    settings = state.settings
    state.notifier.bind_loop(asyncio.get_running_loop())

    dispatcher = state.dispatcher
    if dispatcher is not None:
        dispatcher.start()
        try:
            session = await dispatcher.connect(
                settings.modem_port,
                settings.modem_baud_rate,
                settings.modem_smsc or None,
            )
            logger.info("Modem session %s on %s", session.state.value, session.port)
        except ModemError as e:
            # Keep running: SMS jobs are recorded as failed until an operator restarts the modem.
            logger.error("Modem unavailable (%s): %s", e.diagnosis, e)
        except Exception:
            # The notifier keeps running; the session stays failed.
            logger.exception("Modem connect failed on %s", settings.modem_port)
    else:
        logger.info("Modem disabled; SMS notifications will be recorded as failed.")

    try:
        await stop_event.wait()
    finally:
        await state.notifier.drain()
        if dispatcher is not None:
            await dispatcher.stop()


@dataclass(slots=True)
class ModemBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def call(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """Run a coroutine on the background loop and wait for it from another thread."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout=timeout)

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            logger.debug("Failed to signal notifier stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_modem_in_background(state: AppState) -> ModemBackgroundRunner | None:
    """
    Start the notification loop (and the modem dispatcher, if enabled) in a
    background thread, so the blocking console REPL can run in the main thread.
    """
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(_run_notifier(state, stop_event))
        except Exception:
            logger.exception("Notifier loop crashed.")
        finally:
            with contextlib.suppress(Exception):
                loop.stop()
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="ecobin-notifier", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Notifier thread did not initialize properly.")
        return None

    logger.info("Notifier background thread started.")
    return ModemBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
