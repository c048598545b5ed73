# src/ecobin/modem/dispatcher.py

from __future__ import annotations

"""
Modem dispatcher.

The only owner of the ModemTransport. Callers submit jobs; a single worker runs
them one at a time, in submission order:
- each job is a blocking transport call, executed via asyncio.to_thread so the event
  loop keeps serving other work,
- no two AT exchanges are ever in flight at once,
- stop() lets the in-flight job finish, fails the rest with ModemNotReadyError,
  then closes the port.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from ..errors import ModemNotReadyError
from ..notify.notify_models import SmsMode
from .transport import ModemSession, ModemStatus, ModemTransport, SendResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class _Job:
    name: str
    fn: Callable[[], Any]
    future: asyncio.Future[Any]


class ModemDispatcher:
    def __init__(self, transport: ModemTransport) -> None:
        self._transport = transport
        self._queue: asyncio.Queue[_Job | None] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._stopping = False

    @property
    def transport(self) -> ModemTransport:
        return self._transport

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._worker = asyncio.create_task(self._run(), name="modem-dispatcher")
        logger.debug("Modem dispatcher started")

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job is None:
                    return
                if job.future.cancelled():
                    continue
                try:
                    result = await asyncio.to_thread(job.fn)
                except Exception as e:
                    if not job.future.done():
                        job.future.set_exception(e)
                else:
                    if not job.future.done():
                        job.future.set_result(result)
            finally:
                self._queue.task_done()

    async def submit(self, name: str, fn: Callable[[], T]) -> T:
        """Queue one blocking transport call and wait for its result."""
        if self._stopping or not self.running:
            raise ModemNotReadyError(f"modem dispatcher is not running ({name})", diagnosis="dispatcher_stopped")
        fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        await self._queue.put(_Job(name=name, fn=fn, future=fut))
        return await fut

    # ---- transport operations ----

    async def connect(self, port: str, baud_rate: int, smsc_number: str | None = None) -> ModemSession:
        return await self.submit("start", lambda: self._transport.start(port, baud_rate, smsc_number))

    async def send_sms(self, number: str, message: str, mode: SmsMode = SmsMode.TEXT) -> SendResult:
        return await self.submit("send_sms", lambda: self._transport.send_sms(number, message, mode))

    async def diagnose(self) -> ModemStatus:
        return await self.submit("diagnose", self._transport.diagnose)

    async def restart(self, port: str, baud_rate: int, smsc_number: str | None = None) -> ModemSession:
        """Close and reopen the session. Used by an operator after a failure."""

        def _restart() -> ModemSession:
            self._transport.close()
            return self._transport.start(port, baud_rate, smsc_number)

        return await self.submit("restart", _restart)

    async def stop(self) -> None:
        """Finish the in-flight job, fail the queued ones, close the port."""
        if self._stopping:
            return
        self._stopping = True

        dropped = 0
        while True:
            try:
                job = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if job is not None and not job.future.done():
                job.future.set_exception(
                    ModemNotReadyError(f"modem shutting down ({job.name})", diagnosis="shutdown")
                )
                dropped += 1
            self._queue.task_done()
        if dropped:
            logger.warning("Modem dispatcher dropped %d queued job(s) on shutdown", dropped)

        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            await self._queue.put(None)
            await worker

        await asyncio.to_thread(self._transport.close)
        logger.info("Modem dispatcher stopped")
