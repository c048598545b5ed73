# src/ecobin/notify/service.py

from __future__ import annotations

"""
Notification service.

Bridges the lifecycle "assigned" event to the channels:

    assigned -> render -> DeliveryTracker.enqueue (dedup) -> modem / push -> outcome

A failed notification never touches the task. Modem errors are logged with their
diagnosis and stored on the job; nothing is resent unless retry() is called.
"""

import asyncio
import logging
from concurrent.futures import Future

from ..core.ports import PushSender, StaffDirectory, StaffMember
from ..errors import DeliveryDuplicate, ModemError, ModemNotReadyError, TransitionError
from ..modem.dispatcher import ModemDispatcher
from ..tasks.lifecycle import TaskLifecycleManager
from ..tasks.task_models import Task
from .composer import NotificationComposer
from .delivery import DeliveryTracker
from .notify_models import Channel, EnqueueResult, JobStatus, NotificationJob, RenderedMessage, SmsMode
from .phone import normalize_phone

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(
        self,
        *,
        composer: NotificationComposer,
        tracker: DeliveryTracker,
        lifecycle: TaskLifecycleManager,
        staff: StaffDirectory,
        dispatcher: ModemDispatcher | None = None,
        push: PushSender | None = None,
        country_code: str = "63",
        sms_mode: SmsMode = SmsMode.TEXT,
    ) -> None:
        self._composer = composer
        self._tracker = tracker
        self._lifecycle = lifecycle
        self._staff = staff
        self._dispatcher = dispatcher
        self._push = push
        self._country_code = country_code
        self._sms_mode = sms_mode
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: set[Future[dict[Channel, NotificationJob | None]]] = set()

    @property
    def composer(self) -> NotificationComposer:
        return self._composer

    @property
    def tracker(self) -> DeliveryTracker:
        return self._tracker

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Event loop that owns the dispatcher; assignments are delivered on it."""
        self._loop = loop

    # ---- lifecycle hook (sync, any thread) ----

    def on_assigned(self, task: Task, member: StaffMember) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning("No event loop bound; notifications for task %s not sent", task.id)
            return

        fut = asyncio.run_coroutine_threadsafe(self.notify_assignment(task, member), loop)
        self._pending.add(fut)
        fut.add_done_callback(self._on_done)

    def _on_done(self, fut: Future[dict[Channel, NotificationJob | None]]) -> None:
        self._pending.discard(fut)
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            logger.error("Assignment notification crashed: %r", exc)

    # ---- delivery ----

    async def notify_assignment(
        self,
        task: Task,
        member: StaffMember,
    ) -> dict[Channel, NotificationJob | None]:
        """SMS first, then push. Each channel is deduplicated on its own."""
        out: dict[Channel, NotificationJob | None] = {}
        out[Channel.SMS] = await self._notify_channel(task, member, Channel.SMS)
        out[Channel.PUSH] = await self._notify_channel(task, member, Channel.PUSH)
        return out

    def _recipient(self, member: StaffMember, channel: Channel) -> str | None:
        if channel is Channel.SMS:
            return normalize_phone(member.contact_number, self._country_code)
        return member.push_token or member.id

    async def _notify_channel(
        self,
        task: Task,
        member: StaffMember,
        channel: Channel,
    ) -> NotificationJob | None:
        if channel is Channel.PUSH and self._push is None:
            return None

        recipient = self._recipient(member, channel)
        if not recipient:
            logger.warning(
                "Staff %s (%s) has no %s recipient; task %s not notified on %s",
                member.id,
                member.full_name,
                channel.value,
                task.id,
                channel.value,
            )
            return None

        rendered = self._composer.render(task, channel)
        return await self._deliver(task, channel, recipient, rendered)

    async def _deliver(
        self,
        task: Task,
        channel: Channel,
        recipient: str,
        rendered: RenderedMessage,
    ) -> NotificationJob | None:
        result = self._tracker.enqueue(task.id, channel, recipient, rendered.text)
        if result is EnqueueResult.DUPLICATE:
            logger.info("Task %s already notified on %s; skipping", task.id, channel.value)
            return self._tracker.get(task.id, channel)

        try:
            if channel is Channel.SMS:
                await self._send_sms(recipient, rendered)
            else:
                await self._send_push(recipient, rendered)
        except ModemError as e:
            carrier_code = getattr(e, "carrier_code", None)
            logger.error(
                "SMS for task %s to %s failed diagnosis=%s code=%s: %s",
                task.id,
                recipient,
                e.diagnosis,
                carrier_code,
                e,
            )
            self._tracker.mark_failed(task.id, channel, e.diagnosis, carrier_code)
        except Exception as e:
            logger.exception("%s delivery failed task_id=%s", channel.value, task.id)
            self._tracker.mark_failed(task.id, channel, f"error: {e}")
        else:
            self._tracker.mark_sent(task.id, channel)
            logger.info(
                "Task %s notified on %s -> %s (%d segment(s))",
                task.id,
                channel.value,
                recipient,
                rendered.segments,
            )

        return self._tracker.get(task.id, channel)

    async def _send_sms(self, recipient: str, rendered: RenderedMessage) -> None:
        if self._dispatcher is None:
            raise ModemNotReadyError("modem is disabled", diagnosis="modem_disabled")
        await self._dispatcher.send_sms(recipient, rendered.text, self._sms_mode)

    async def _send_push(self, recipient: str, rendered: RenderedMessage) -> None:
        push = self._push
        if push is None:
            raise RuntimeError("push channel is not configured")
        await push.send(recipient=recipient, payload=rendered.payload or {})

    # ---- operator actions ----

    async def retry(self, task_id: int, channel: Channel) -> NotificationJob | None:
        """
        Re-render and re-send a notification whose last attempt failed.

        Raises DeliveryDuplicate if it was already sent or is in flight.
        """
        job = self._tracker.get(task_id, channel)
        if job is not None and job.status is not JobStatus.FAILED:
            raise DeliveryDuplicate(task_id, channel.value)

        task = self._lifecycle.get(task_id)
        if not task.assigned_staff_id:
            raise TransitionError(task_id, "notify", task.status.value, "no staff assigned")

        member = self._staff.get_staff(task.assigned_staff_id)
        if member is None:
            raise TransitionError(task_id, "notify", task.status.value, "assigned staff no longer exists")

        return await self._notify_channel(task, member, channel)

    async def drain(self) -> None:
        """Wait for notifications started by on_assigned. Must run on the bound loop."""
        pending = [asyncio.wrap_future(f) for f in list(self._pending)]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
