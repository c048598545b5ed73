# src/ecobin/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ..errors import DedupConflict
from .task_models import Task, TaskPriority, TaskSource, TaskStatus

logger = logging.getLogger(__name__)

# Columns callers may set through add_task / try_transition.
_WRITABLE = (
    "bin_id",
    "bin_location",
    "status",
    "priority",
    "source",
    "assigned_staff_id",
    "assigned_staff_name",
    "notes",
    "bin_name",
    "level_percent",
    "weight_kg",
    "height_percent",
    "gps_valid",
    "latitude",
    "longitude",
    "assigned_by",
    "completion_notes",
    "archived_at",
)


class TaskStore:
    """
    SQLite task store.

    The schema is migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    A partial unique index enforces "one unresolved automatic task per bin" at the
    storage level, so concurrent writers cannot both insert.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("TaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    bin_id TEXT NOT NULL,
                    bin_location TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'pending',
                    priority TEXT NOT NULL DEFAULT 'medium',
                    source TEXT NOT NULL DEFAULT 'manual',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    assigned_staff_id TEXT,
                    assigned_staff_name TEXT,
                    notes TEXT
                )
                """
            )

            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("assigned_staff_id", "TEXT")
            add_col("assigned_staff_name", "TEXT")
            add_col("notes", "TEXT")
            add_col("bin_name", "TEXT")
            add_col("level_percent", "REAL NOT NULL DEFAULT 0")
            add_col("weight_kg", "REAL NOT NULL DEFAULT 0")
            add_col("height_percent", "REAL NOT NULL DEFAULT 0")
            add_col("gps_valid", "INTEGER NOT NULL DEFAULT 0")
            add_col("latitude", "REAL")
            add_col("longitude", "REAL")
            add_col("assigned_by", "TEXT")
            add_col("completion_notes", "TEXT")
            add_col("archived_at", "REAL")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_bin ON tasks(bin_id, status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_staff ON tasks(assigned_staff_id)")
            cur.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_tasks_open_automatic
                ON tasks(bin_id)
                WHERE source = 'automatic' AND status IN ('pending', 'in_progress')
                """
            )

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            bin_id=str(row["bin_id"]),
            bin_location=str(row["bin_location"] or ""),
            status=TaskStatus.from_db(row["status"]),
            priority=TaskPriority.from_db(row["priority"]),
            source=TaskSource(row["source"] or TaskSource.MANUAL.value),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            assigned_staff_id=row["assigned_staff_id"],
            assigned_staff_name=row["assigned_staff_name"],
            notes=row["notes"],
            bin_name=row["bin_name"],
            level_percent=float(row["level_percent"] or 0.0),
            weight_kg=float(row["weight_kg"] or 0.0),
            height_percent=float(row["height_percent"] or 0.0),
            gps_valid=bool(row["gps_valid"]),
            latitude=row["latitude"],
            longitude=row["longitude"],
            assigned_by=row["assigned_by"],
            completion_notes=row["completion_notes"],
            archived_at=row["archived_at"],
        )

    @staticmethod
    def _to_db(name: str, value: Any) -> Any:
        if hasattr(value, "value"):
            return value.value
        if name == "gps_valid":
            return 1 if value else 0
        return value

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(self, *, now_ts: float | None = None, **fields: Any) -> int:
        """
        Insert a task and return its id.

        Raises DedupConflict if this would create a second unresolved automatic task
        for the same bin.
        """
        bin_id = str(fields.get("bin_id") or "").strip()
        if not bin_id:
            raise ValueError("bin_id is required")
        unknown = set(fields) - set(_WRITABLE)
        if unknown:
            raise ValueError(f"unknown task fields: {sorted(unknown)}")

        now = time.time() if now_ts is None else float(now_ts)
        cols = list(fields)
        params = [self._to_db(c, fields[c]) for c in cols]
        cols += ["created_at", "updated_at"]
        params += [now, now]

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            try:
                cur.execute(
                    f"INSERT INTO tasks({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
                    params,
                )
            except sqlite3.IntegrityError as e:
                conn.rollback()
                existing = self.find_open_automatic_task(bin_id)
                if existing is None:
                    raise
                raise DedupConflict(bin_id, existing.id) from e
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for tasks insert")
            task_id = int(rowid)
            logger.debug(
                "Task added id=%s bin=%s source=%s priority=%s",
                task_id,
                bin_id,
                fields.get("source"),
                fields.get("priority"),
            )
            return task_id
        finally:
            conn.close()

    def get_task(self, task_id: int) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def find_open_automatic_task(self, bin_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE bin_id = ?
                  AND source = 'automatic'
                  AND status IN ('pending', 'in_progress')
                ORDER BY created_at ASC
                    LIMIT 1
                """,
                (bin_id,),
            ).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def list_tasks(
        self,
        *,
        status: TaskStatus | Iterable[TaskStatus] | None = None,
        bin_id: str | None = None,
        source: TaskSource | None = None,
        staff_id: str | None = None,
        limit: int = 100,
    ) -> list[Task]:
        where: list[str] = []
        params: list[Any] = []

        if status is not None:
            statuses = [status] if isinstance(status, TaskStatus) else list(status)
            where.append(f"status IN ({','.join('?' for _ in statuses)})")
            params.extend(s.value for s in statuses)
        if bin_id:
            where.append("bin_id = ?")
            params.append(bin_id)
        if source is not None:
            where.append("source = ?")
            params.append(source.value)
        if staff_id:
            where.append("assigned_staff_id = ?")
            params.append(staff_id)

        sql = "SELECT * FROM tasks"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(int(limit))

        conn = self._get_conn()
        try:
            return [self._row_to_task(r) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def try_transition(
        self,
        task_id: int,
        *,
        expected: Iterable[TaskStatus],
        new_status: TaskStatus,
        **fields: Any,
    ) -> bool:
        """
        Atomically transitions:
          status IN expected  -> status = new_status (+ extra fields)

        Returns True if this caller performed the transition.
        """
        exp = [e.value for e in expected]
        if not exp:
            return False
        unknown = set(fields) - set(_WRITABLE)
        if unknown:
            raise ValueError(f"unknown task fields: {sorted(unknown)}")

        sets = ["status = ?", "updated_at = ?"]
        params: list[Any] = [new_status.value, time.time()]
        for name, value in fields.items():
            sets.append(f"{name} = ?")
            params.append(self._to_db(name, value))

        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                UPDATE tasks
                SET {', '.join(sets)}
                WHERE id = ?
                  AND status IN ({','.join('?' for _ in exp)})
                """,
                (*params, int(task_id), *exp),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()
