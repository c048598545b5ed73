# src/ecobin/notify/delivery.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from .notify_models import Channel, EnqueueResult, JobStatus, NotificationJob

logger = logging.getLogger(__name__)


class DeliveryTracker:
    """
    Idempotency and outcome bookkeeping for notification attempts (SQLite).

    One row per (task_id, channel):
    - no row          -> accepted, attempt 1
    - queued / sent   -> duplicate
    - failed          -> accepted again, attempt + 1 (explicit retry only)

    The read-decide-write in enqueue runs inside BEGIN IMMEDIATE, so two callers
    cannot both be accepted for the same key.
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("DeliveryTracker ready db=%s", self._db_path)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS notification_jobs (
                    task_id INTEGER NOT NULL,
                    channel TEXT NOT NULL,
                    recipient TEXT NOT NULL,
                    rendered_message TEXT NOT NULL,
                    attempt INTEGER NOT NULL DEFAULT 1,
                    status TEXT NOT NULL DEFAULT 'queued',
                    failure_reason TEXT,
                    carrier_code TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (task_id, channel)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_jobs_status ON notification_jobs(status, updated_at)"
            )
        finally:
            conn.close()

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> NotificationJob:
        return NotificationJob(
            task_id=int(row["task_id"]),
            channel=Channel(row["channel"]),
            recipient=str(row["recipient"]),
            rendered_message=str(row["rendered_message"]),
            attempt=int(row["attempt"]),
            status=JobStatus.from_db(row["status"]),
            failure_reason=row["failure_reason"],
            carrier_code=row["carrier_code"],
            created_at=float(row["created_at"]),
            updated_at=float(row["updated_at"]),
        )

    # ---- public API ----

    def enqueue(self, task_id: int, channel: Channel, recipient: str, message: str) -> EnqueueResult:
        now = time.time()
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT status, attempt FROM notification_jobs WHERE task_id = ? AND channel = ?",
                (int(task_id), channel.value),
            ).fetchone()

            if row is None:
                conn.execute(
                    """
                    INSERT INTO notification_jobs(
                        task_id, channel, recipient, rendered_message,
                        attempt, status, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, 1, 'queued', ?, ?)
                    """,
                    (int(task_id), channel.value, recipient, message, now, now),
                )
                conn.execute("COMMIT")
                logger.debug("Job accepted task=%s channel=%s attempt=1", task_id, channel.value)
                return EnqueueResult.ACCEPTED

            status = JobStatus.from_db(row["status"])
            if status is not JobStatus.FAILED:
                conn.execute("ROLLBACK")
                logger.info(
                    "Duplicate notification rejected task=%s channel=%s status=%s",
                    task_id,
                    channel.value,
                    status.value,
                )
                return EnqueueResult.DUPLICATE

            attempt = int(row["attempt"]) + 1
            conn.execute(
                """
                UPDATE notification_jobs
                SET recipient = ?, rendered_message = ?, attempt = ?, status = 'queued',
                    failure_reason = NULL, carrier_code = NULL, updated_at = ?
                WHERE task_id = ? AND channel = ?
                """,
                (recipient, message, attempt, now, int(task_id), channel.value),
            )
            conn.execute("COMMIT")
            logger.info("Retry accepted task=%s channel=%s attempt=%s", task_id, channel.value, attempt)
            return EnqueueResult.ACCEPTED
        except Exception:
            with contextlib.suppress(sqlite3.Error):
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _set_outcome(self, task_id: int, channel: Channel, **fields: Any) -> None:
        sets = [f"{k} = ?" for k in fields] + ["updated_at = ?"]
        params = [*fields.values(), time.time(), int(task_id), channel.value]
        conn = self._get_conn()
        try:
            conn.execute(
                f"""
                UPDATE notification_jobs
                SET {', '.join(sets)}
                WHERE task_id = ? AND channel = ? AND status = 'queued'
                """,
                params,
            )
        finally:
            conn.close()

    def mark_sent(self, task_id: int, channel: Channel) -> None:
        self._set_outcome(task_id, channel, status=JobStatus.SENT.value)

    def mark_failed(
        self,
        task_id: int,
        channel: Channel,
        reason: str,
        carrier_code: str | None = None,
    ) -> None:
        self._set_outcome(
            task_id,
            channel,
            status=JobStatus.FAILED.value,
            failure_reason=reason,
            carrier_code=carrier_code,
        )

    def get(self, task_id: int, channel: Channel) -> NotificationJob | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM notification_jobs WHERE task_id = ? AND channel = ?",
                (int(task_id), channel.value),
            ).fetchone()
            return self._row_to_job(row) if row else None
        finally:
            conn.close()

    def list_jobs(
        self,
        *,
        task_id: int | None = None,
        status: JobStatus | None = None,
        limit: int = 100,
    ) -> list[NotificationJob]:
        where: list[str] = []
        params: list[Any] = []
        if task_id is not None:
            where.append("task_id = ?")
            params.append(int(task_id))
        if status is not None:
            where.append("status = ?")
            params.append(status.value)

        sql = "SELECT * FROM notification_jobs"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY updated_at DESC LIMIT ?"
        params.append(int(limit))

        conn = self._get_conn()
        try:
            return [self._row_to_job(r) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def fail_interrupted(self) -> int:
        """
        Mark jobs left queued by a previous process as failed.

        Whether such a send reached the modem is unknown, so it is not resent
        automatically; an operator can retry it explicitly.
        """
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE notification_jobs
                SET status = 'failed', failure_reason = 'interrupted', updated_at = ?
                WHERE status = 'queued'
                """,
                (time.time(),),
            )
            n = cur.rowcount
        finally:
            conn.close()
        if n:
            logger.warning("Marked %d interrupted notification job(s) as failed", n)
        return n
