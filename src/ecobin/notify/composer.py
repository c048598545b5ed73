# src/ecobin/notify/composer.py

from __future__ import annotations

"""
Render a task into a channel-appropriate message.

SMS rendering degrades step by step until the text fits the budget:

1. full labeled multi-line message
2. compact single line, then the same line without height
3. notes cut to what is left (with "..."), or dropped when nothing is left
4. manual/auto annotation dropped
5. hard cut at budget - 3 + "..."

GPS goes first (the compact form has none), then height, notes, the annotation.
Bin identity, location, level and attribution always stay. Rendering reads only
task fields, so the same task always renders to the same text.
"""

import json
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, tzinfo

from ..errors import ComposerOverflowError
from ..modem import gsm7
from ..tasks.task_models import Task, TaskSource
from ..telemetry.monitor import Band, classify_level
from .notify_models import Channel, RenderedMessage

logger = logging.getLogger(__name__)

ELLIPSIS = "..."
NOTE_PREFIX = "Note: "
NOTE_SUFFIX = ". "
# Shortest note worth sending, ellipsis included.
MIN_NOTE_CHARS = len(ELLIPSIS) + 4
# Below this the compact form cannot carry bin, location, level and attribution.
MIN_VIABLE_BUDGET = 60

TIME_FORMAT = "%m/%d/%Y %I:%M %p"


def _num(value: float) -> str:
    return f"{value:g}"


class NotificationComposer:
    def __init__(
        self,
        *,
        bands: Sequence[Band],
        band_labels: Mapping[str, str] | None = None,
        max_segments: int = 1,
        concatenation: bool = False,
        budget: int | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        self._bands = tuple(bands)
        self._labels = {k.lower(): v for k, v in (band_labels or {}).items()}
        self._max_segments = max(1, int(max_segments))
        self._concatenation = bool(concatenation) and self._max_segments > 1
        self._tz = tz
        # Explicit septet budget, for carriers that cut messages shorter than a segment.
        self._budget = int(budget) if budget is not None else None

        if self.sms_budget < MIN_VIABLE_BUDGET:
            raise ComposerOverflowError(
                f"SMS budget {self.sms_budget} is below the minimum viable {MIN_VIABLE_BUDGET}"
            )

    @property
    def sms_budget(self) -> int:
        if self._budget is not None:
            return self._budget
        if self._concatenation:
            return gsm7.CONCAT_SEGMENT * self._max_segments
        return gsm7.SINGLE_SEGMENT

    def render(self, task: Task, channel: Channel) -> RenderedMessage:
        if channel is Channel.PUSH:
            payload = self.push_payload(task)
            text = json.dumps(payload, ensure_ascii=False, sort_keys=True)
            return RenderedMessage(channel=channel, text=text, segments=1, payload=payload)

        text = self.render_sms(task)
        return RenderedMessage(channel=channel, text=text, segments=gsm7.segment_count(text))

    # ---- field helpers ----

    def band_label(self, level_percent: float) -> str:
        priority = classify_level(level_percent, self._bands)
        if priority is None:
            return "NORMAL"
        return self._labels.get(priority.value, priority.value.upper())

    def format_time(self, ts: float) -> str:
        return datetime.fromtimestamp(ts, tz=self._tz).strftime(TIME_FORMAT)

    @staticmethod
    def _attribution(task: Task) -> str:
        return task.assigned_by or task.assigned_staff_name or "Staff"

    @staticmethod
    def _clean(text: str | None) -> str:
        return gsm7.sanitize(" ".join((text or "").split()))

    @staticmethod
    def _gps(task: Task) -> str:
        if task.gps_valid and task.latitude is not None and task.longitude is not None:
            return f"GPS: {task.latitude:.6f}, {task.longitude:.6f}"
        return "GPS: Not available"

    # ---- push ----

    def push_payload(self, task: Task) -> dict[str, object]:
        manual = task.source is TaskSource.MANUAL
        return {
            "type": "task_assigned",
            "title": "Manual task assignment" if manual else "Task assignment",
            "body": f"{task.display_name} @ {task.bin_location} is {_num(task.level_percent)}% full",
            "task": {
                "id": task.id,
                "bin_id": task.bin_id,
                "bin_name": task.display_name,
                "bin_location": task.bin_location,
                "status": task.status.value,
                "priority": task.priority.value,
                "source": task.source.value,
                "level_percent": task.level_percent,
                "band": self.band_label(task.level_percent),
                "weight_kg": task.weight_kg,
                "height_percent": task.height_percent,
                "gps_valid": task.gps_valid,
                "latitude": task.latitude,
                "longitude": task.longitude,
                "notes": task.notes,
                "assigned_staff_id": task.assigned_staff_id,
                "assigned_staff_name": task.assigned_staff_name,
                "assigned_by": self._attribution(task),
                "created_at": task.created_at,
                "updated_at": task.updated_at,
            },
        }

    # ---- sms ----

    def render_full(self, task: Task) -> str:
        manual = task.source is TaskSource.MANUAL
        notes = self._clean(task.notes)

        lines = [
            "MANUAL TASK ASSIGNMENT" if manual else "TASK ASSIGNMENT",
            f"Bin: {self._clean(task.display_name)}",
            f"Location: {self._clean(task.bin_location)}",
            f"Fill Level: {_num(task.level_percent)}% ({self.band_label(task.level_percent)})",
            f"Weight: {_num(task.weight_kg)} kg",
            f"Height: {_num(task.height_percent)}%",
            self._gps(task),
        ]
        if notes:
            lines.append(f"Task Notes: {notes}")
        lines.append(f"Assigned by: {self._clean(self._attribution(task))}")
        lines.append(f"Time: {self.format_time(task.updated_at)}")
        if manual:
            lines.append("Staff selected you manually for this task")
        lines.append("Please proceed to empty the bin immediately.")
        return "\n".join(lines)

    def _compact(
        self,
        task: Task,
        *,
        notes: str,
        with_height: bool = True,
        with_kind: bool = True,
    ) -> str:
        kind = ("MANUAL " if task.source is TaskSource.MANUAL else "AUTO ") if with_kind else ""
        msg = f"{kind}TASK: {self._clean(task.display_name)} @ {self._clean(task.bin_location)}. "
        msg += f"Level:{_num(task.level_percent)}% ({self.band_label(task.level_percent)}). "
        msg += f"W:{_num(task.weight_kg)}kg"
        msg += f" H:{_num(task.height_percent)}%. " if with_height else ". "
        if notes:
            suffix = " " if notes.endswith(ELLIPSIS) else NOTE_SUFFIX
            msg += f"{NOTE_PREFIX}{notes}{suffix}"
        msg += f"By {self._clean(self._attribution(task))} {self.format_time(task.updated_at)}. Empty now"
        return msg

    def _fit_notes(self, task: Task, notes: str, *, with_kind: bool) -> str:
        """Compact form without height, notes cut to the remaining budget."""
        budget = self.sms_budget
        without = self._compact(task, notes="", with_height=False, with_kind=with_kind)
        room = budget - gsm7.septet_length(without) - len(NOTE_PREFIX) - len(NOTE_SUFFIX)
        if notes and room >= MIN_NOTE_CHARS:
            cut = gsm7.truncate_septets(notes, room - len(ELLIPSIS)).rstrip()
            return self._compact(
                task, notes=cut + ELLIPSIS, with_height=False, with_kind=with_kind
            )
        return without

    def render_sms(self, task: Task) -> str:
        budget = self.sms_budget

        def fits(s: str) -> bool:
            return gsm7.septet_length(s) <= budget

        full = self.render_full(task)
        if fits(full):
            return full

        notes = self._clean(task.notes)

        for candidate in (
            self._compact(task, notes=notes),
            self._compact(task, notes=notes, with_height=False),
            self._fit_notes(task, notes, with_kind=True),
            self._fit_notes(task, notes, with_kind=False),
        ):
            if fits(candidate):
                return candidate

        # Pathological: very long bin name, location or staff name.
        msg = gsm7.truncate_septets(candidate, budget - len(ELLIPSIS)) + ELLIPSIS
        if not fits(msg):
            raise ComposerOverflowError(f"cannot fit task {task.id} into {budget} septets")
        logger.warning("SMS for task %s hard-truncated to %d septets", task.id, budget)
        return msg
