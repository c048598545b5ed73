# src/ecobin/notify/notify_models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class Channel(StrEnum):
    SMS = "sms"
    PUSH = "push"


class JobStatus(StrEnum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> JobStatus:
        try:
            return cls(raw or "")
        except ValueError:
            return cls.FAILED


class EnqueueResult(StrEnum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"


class SmsMode(StrEnum):
    TEXT = "text"
    PDU = "pdu"


@dataclass(slots=True, frozen=True)
class RenderedMessage:
    channel: Channel
    text: str
    segments: int = 1
    payload: dict[str, Any] | None = None


@dataclass(slots=True)
class NotificationJob:
    """One notification attempt record. (task_id, channel) is unique."""

    task_id: int
    channel: Channel
    recipient: str
    rendered_message: str
    attempt: int
    status: JobStatus
    failure_reason: str | None = None
    carrier_code: str | None = None
    created_at: float = 0.0
    updated_at: float = 0.0
