# src/ecobin/staff/directory.py

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ..core.ports import StaffMember

logger = logging.getLogger(__name__)


def _member_from_dict(raw: dict[str, Any]) -> StaffMember | None:
    staff_id = str(raw.get("id") or "").strip()
    if not staff_id:
        return None
    name = str(raw.get("full_name") or raw.get("fullName") or staff_id).strip()
    contact = raw.get("contact_number") or raw.get("contactNumber")
    return StaffMember(
        id=staff_id,
        full_name=name,
        contact_number=str(contact).strip() if contact else None,
        role=str(raw.get("role") or "janitor").strip().lower(),
        status=str(raw.get("status") or "active").strip().lower(),
        push_token=raw.get("push_token") or raw.get("fcmToken") or None,
    )


class JsonStaffDirectory:
    """
    Staff directory backed by a JSON file (a list of staff objects).

    The file is re-read when its mtime changes, so edits take effect without a
    restart. A missing file is an empty directory.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._mtime: float | None = None
        self._members: dict[str, StaffMember] = {}

    def _load_if_changed(self) -> None:
        try:
            mtime = self._path.stat().st_mtime
        except FileNotFoundError:
            if self._members:
                logger.warning("Staff file %s disappeared; directory is empty", self._path)
            self._members, self._mtime = {}, None
            return

        if mtime == self._mtime:
            return

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.exception("Failed to read staff file %s; keeping previous entries", self._path)
            return

        rows = data.get("staff", []) if isinstance(data, dict) else data
        members: dict[str, StaffMember] = {}
        for raw in rows if isinstance(rows, list) else []:
            if not isinstance(raw, dict):
                continue
            member = _member_from_dict(raw)
            if member is not None:
                members[member.id] = member

        self._members, self._mtime = members, mtime
        logger.info("Loaded %d staff member(s) from %s", len(members), self._path)

    def get_staff(self, staff_id: str) -> StaffMember | None:
        with self._lock:
            self._load_if_changed()
            return self._members.get(str(staff_id))

    def list_staff(self, *, role: str | None = None) -> list[StaffMember]:
        with self._lock:
            self._load_if_changed()
            members: Iterable[StaffMember] = self._members.values()
        if role:
            members = [m for m in members if m.role == role.lower()]
        return sorted(members, key=lambda m: m.full_name.lower())
