# src/ecobin/notify/push.py

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


class LoggingPushSender:
    """
    Default push collaborator when no push backend is wired in.

    Delivery internals live outside this service; this just records what would
    have been pushed.
    """

    async def send(self, *, recipient: str, payload: dict[str, Any]) -> None:
        logger.info(
            "Push -> %s: %s",
            recipient,
            json.dumps(payload, ensure_ascii=False, sort_keys=True),
        )
