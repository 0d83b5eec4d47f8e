# queue/sqlite_queue.py
import asyncio
import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from charla.queue.base import WorkQueue
from charla.queue.models import (
    Backoff, QueueTask, RetryPolicy, StalledLimitError, TaskState,
)
from charla.storage.db import get_connection, init_schema

logger = logging.getLogger(__name__)

_DEFAULT_QUEUE_DB_PATH = Path.home() / ".charla" / "queue.db"

_QUEUE_SCHEMA = """
CREATE TABLE IF NOT EXISTS queue_tasks (
    id            TEXT    PRIMARY KEY,
    task_type     TEXT    NOT NULL,
    payload       TEXT    NOT NULL,
    state         TEXT    NOT NULL,
    attempts_made INTEGER NOT NULL DEFAULT 0,
    max_attempts  INTEGER NOT NULL DEFAULT 1,
    backoff_type  TEXT    NOT NULL DEFAULT 'exponential',
    backoff_delay REAL    NOT NULL DEFAULT 0,
    run_at        TEXT    NOT NULL,
    locked_until  TEXT,
    worker_id     TEXT,
    stalled_count INTEGER NOT NULL DEFAULT 0,
    failed_reason TEXT,
    created_at    TEXT    NOT NULL,
    updated_at    TEXT    NOT NULL,
    finished_at   TEXT
);

CREATE INDEX IF NOT EXISTS idx_queue_state_run_at ON queue_tasks (state, run_at);
"""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime) -> str:
    # Formato fijo: las comparaciones de fechas se hacen como texto en SQL
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SqliteWorkQueue(WorkQueue):
    """
    Cola persistente sobre su propia base SQLite, independiente del
    almacén de jobs: son dos fuentes de verdad distintas y el
    reconciliador existe precisamente para cuadrarlas.

    Ciclo de vida de una tarea:
        waiting/delayed -> active -> completed
                                  -> delayed (reintento con backoff)
                                  -> failed  (sin reintentos)
        active con lock vencido -> waiting (stalled) o failed (límite)
    """

    def __init__(self, db_path: str | None = None, default_policy: RetryPolicy | None = None):
        super().__init__()
        self._conn = get_connection(
            db_path,
            env_var      = "CHARLA_QUEUE_DB_PATH",
            default_path = _DEFAULT_QUEUE_DB_PATH,
        )
        self._lock           = threading.Lock()
        self._default_policy = default_policy or RetryPolicy(attempts=1, backoff=Backoff(delay_seconds=0))
        init_schema(self._conn, _QUEUE_SCHEMA)

    # ------------------------------------------------------------------
    # Productor
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        task_type: str,
        payload:   dict,
        task_id:   Optional[str]         = None,
        policy:    Optional[RetryPolicy] = None,
    ) -> QueueTask:
        policy  = policy or self._default_policy
        task_id = task_id or uuid.uuid4().hex
        now     = _ts(_now())

        def run() -> sqlite3.Row:
            with self._lock, self._conn:
                inserted = self._conn.execute(
                    """
                    INSERT OR IGNORE INTO queue_tasks
                        (id, task_type, payload, state, attempts_made, max_attempts,
                         backoff_type, backoff_delay, run_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, 0, ?, ?, ?, ?, ?, ?)
                    """,
                    (task_id, task_type, json.dumps(payload), TaskState.WAITING.value,
                     max(1, policy.attempts), policy.backoff.type,
                     policy.backoff.delay_seconds, now, now, now),
                ).rowcount
                if not inserted:
                    logger.debug("Tarea %s ya existe, no se duplica", task_id)
                return self._conn.execute(
                    "SELECT * FROM queue_tasks WHERE id = ?", (task_id,)
                ).fetchone()

        row = await asyncio.to_thread(run)
        return _row_to_task(row)

    # ------------------------------------------------------------------
    # Consultas
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str) -> QueueTask | None:
        rows = await self._fetch("SELECT * FROM queue_tasks WHERE id = ?", (task_id,))
        return _row_to_task(rows[0]) if rows else None

    async def get_active(self) -> list[QueueTask]:
        return await self._get_by_state(TaskState.ACTIVE)

    async def get_waiting(self) -> list[QueueTask]:
        return await self._get_by_state(TaskState.WAITING)

    async def get_delayed(self) -> list[QueueTask]:
        return await self._get_by_state(TaskState.DELAYED)

    async def get_failed(self) -> list[QueueTask]:
        return await self._get_by_state(TaskState.FAILED)

    async def get_counts(self) -> dict[TaskState, int]:
        rows = await self._fetch(
            "SELECT state, COUNT(*) AS total FROM queue_tasks GROUP BY state"
        )
        counts = {state: 0 for state in TaskState}
        for row in rows:
            counts[TaskState(row["state"])] = row["total"]
        return counts

    # ------------------------------------------------------------------
    # Consumidor
    # ------------------------------------------------------------------

    async def claim_next(self, worker_id: str, lock_seconds: float) -> QueueTask | None:
        """
        Toma la siguiente tarea lista (waiting, o delayed cuyo run_at ya pasó)
        y la marca active con un lock hasta now + lock_seconds.
        Devuelve None si no hay nada listo o si otro worker se la llevó antes.
        """
        now          = _now()
        locked_until = _ts(now + timedelta(seconds=lock_seconds))

        def run() -> sqlite3.Row | None:
            with self._lock, self._conn:
                row = self._conn.execute(
                    """
                    SELECT id FROM queue_tasks
                    WHERE state = ? OR (state = ? AND run_at <= ?)
                    ORDER BY run_at ASC, created_at ASC
                    LIMIT 1
                    """,
                    (TaskState.WAITING.value, TaskState.DELAYED.value, _ts(now)),
                ).fetchone()
                if row is None:
                    return None

                claimed = self._conn.execute(
                    """
                    UPDATE queue_tasks
                    SET state = ?, worker_id = ?, locked_until = ?, updated_at = ?
                    WHERE id = ? AND state IN (?, ?)
                    """,
                    (TaskState.ACTIVE.value, worker_id, locked_until, _ts(now), row["id"],
                     TaskState.WAITING.value, TaskState.DELAYED.value),
                ).rowcount
                if claimed != 1:
                    return None
                return self._conn.execute(
                    "SELECT * FROM queue_tasks WHERE id = ?", (row["id"],)
                ).fetchone()

        row = await asyncio.to_thread(run)
        return _row_to_task(row) if row else None

    async def extend_lock(self, task_id: str, worker_id: str, lock_seconds: float) -> bool:
        """Renueva el lock. False si la tarea ya no pertenece a este worker."""
        now     = _now()
        changed = await self._execute(
            """
            UPDATE queue_tasks SET locked_until = ?, updated_at = ?
            WHERE id = ? AND state = ? AND worker_id = ?
            """,
            (_ts(now + timedelta(seconds=lock_seconds)), _ts(now),
             task_id, TaskState.ACTIVE.value, worker_id),
        )
        return changed == 1

    async def complete(self, task_id: str, worker_id: str | None = None) -> QueueTask | None:
        now = _ts(_now())
        sql = """
            UPDATE queue_tasks
            SET state = ?, locked_until = NULL, finished_at = ?, updated_at = ?
            WHERE id = ? AND state = ?
        """
        params: list = [TaskState.COMPLETED.value, now, now, task_id, TaskState.ACTIVE.value]
        if worker_id is not None:
            sql += " AND worker_id = ?"
            params.append(worker_id)

        if await self._execute(sql, tuple(params)) != 1:
            logger.warning("No se pudo completar la tarea %s: ya no está activa", task_id)
            return None

        task = await self.get_task(task_id)
        self._emit("completed", task)
        return task

    async def fail(self, task_id: str, error: Exception, worker_id: str | None = None) -> QueueTask | None:
        """
        Registra un intento fallido. Si quedan intentos la tarea pasa a
        delayed con run_at = now + backoff; si no, pasa a failed y se
        emite el evento 'failed'.
        """
        task = await self.get_task(task_id)
        if task is None or task.state != TaskState.ACTIVE:
            logger.warning("No se pudo marcar como fallida la tarea %s: ya no está activa", task_id)
            return None
        if worker_id is not None and task.worker_id != worker_id:
            logger.warning("La tarea %s pertenece a otro worker, se ignora el fallo", task_id)
            return None

        attempts = task.attempts_made + 1
        now      = _now()

        if attempts < task.max_attempts:
            delay   = task.backoff.delay_for(attempts)
            changed = await self._execute(
                """
                UPDATE queue_tasks
                SET state = ?, attempts_made = ?, run_at = ?, locked_until = NULL,
                    worker_id = NULL, failed_reason = ?, updated_at = ?
                WHERE id = ? AND state = ? AND worker_id IS ?
                """,
                (TaskState.DELAYED.value, attempts, _ts(now + timedelta(seconds=delay)),
                 str(error), _ts(now), task_id, TaskState.ACTIVE.value, task.worker_id),
            )
            if changed != 1:
                logger.warning("La tarea %s cambió mientras se registraba el fallo, se ignora", task_id)
                return None
            logger.info(
                "Tarea %s falló (intento %d/%d), reintento en %.0fs",
                task_id, attempts, task.max_attempts, delay,
            )
            return await self.get_task(task_id)

        changed = await self._finish_failed(
            task_id, attempts, str(error), now, expected_worker_id=task.worker_id,
        )
        if changed != 1:
            logger.warning("La tarea %s cambió mientras se registraba el fallo, se ignora", task_id)
            return None
        failed = await self.get_task(task_id)
        self._emit("failed", failed, error)
        return failed

    async def check_stalled(self, max_stalled_count: int = 1) -> list[QueueTask]:
        """
        Busca tareas active con el lock vencido (worker muerto o colgado).
        Vuelven a waiting y se emite 'stalled'; las que superan
        max_stalled_count pasan a failed y se emite 'failed'. Si el worker
        renueva el lock entre la lectura y la escritura, la tarea no se toca.
        """
        now  = _now()
        rows = await self._fetch(
            "SELECT * FROM queue_tasks WHERE state = ? AND locked_until < ?",
            (TaskState.ACTIVE.value, _ts(now)),
        )

        stalled: list[QueueTask] = []
        for row in rows:
            task  = _row_to_task(row)
            count = task.stalled_count + 1

            if count > max_stalled_count:
                changed = await self._finish_failed(
                    task.id, task.attempts_made, "job stalled more than allowable limit", now,
                    stalled_count         = count,
                    expected_locked_until = row["locked_until"],
                )
                if changed == 1:
                    failed = await self.get_task(task.id)
                    self._emit("failed", failed, StalledLimitError(
                        f"Tarea {task.id} colgada {count} veces (límite {max_stalled_count})"
                    ))
                continue

            changed = await self._execute(
                """
                UPDATE queue_tasks
                SET state = ?, stalled_count = ?, locked_until = NULL,
                    worker_id = NULL, updated_at = ?
                WHERE id = ? AND state = ? AND locked_until = ?
                """,
                (TaskState.WAITING.value, count, _ts(now), task.id,
                 TaskState.ACTIVE.value, row["locked_until"]),
            )
            if changed == 1:
                requeued = await self.get_task(task.id)
                stalled.append(requeued)
                self._emit("stalled", requeued)

        return stalled

    async def _finish_failed(
        self, task_id: str, attempts: int, reason: str, now: datetime,
        stalled_count:         int | None = None,
        expected_worker_id:    str | None = None,
        expected_locked_until: str | None = None,
    ) -> int:
        """Pasa una tarea active a failed. Devuelve las filas cambiadas (0 o 1)."""
        sql = """
            UPDATE queue_tasks
            SET state = ?, attempts_made = ?, locked_until = NULL, failed_reason = ?,
                finished_at = ?, updated_at = ?
        """
        params: list = [TaskState.FAILED.value, attempts, reason, _ts(now), _ts(now)]
        if stalled_count is not None:
            sql += ", stalled_count = ?"
            params.append(stalled_count)
        sql += " WHERE id = ? AND state = ?"
        params.extend([task_id, TaskState.ACTIVE.value])
        if expected_worker_id is not None:
            sql += " AND worker_id = ?"
            params.append(expected_worker_id)
        if expected_locked_until is not None:
            sql += " AND locked_until = ?"
            params.append(expected_locked_until)
        return await self._execute(sql, tuple(params))

    # ------------------------------------------------------------------
    # Acceso a la conexión
    # ------------------------------------------------------------------

    async def _get_by_state(self, state: TaskState) -> list[QueueTask]:
        rows = await self._fetch(
            "SELECT * FROM queue_tasks WHERE state = ? ORDER BY run_at ASC, created_at ASC",
            (state.value,),
        )
        return [_row_to_task(r) for r in rows]

    async def _execute(self, sql: str, params: tuple = ()) -> int:
        def run() -> int:
            with self._lock, self._conn:
                return self._conn.execute(sql, params).rowcount

        return await asyncio.to_thread(run)

    async def _fetch(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        def run():
            with self._lock:
                return self._conn.execute(sql, params).fetchall()

        return await asyncio.to_thread(run)

    def close(self) -> None:
        self._conn.close()


def _row_to_task(row: sqlite3.Row) -> QueueTask:
    return QueueTask(
        id            = row["id"],
        task_type     = row["task_type"],
        payload       = json.loads(row["payload"]),
        state         = TaskState(row["state"]),
        attempts_made = row["attempts_made"],
        max_attempts  = row["max_attempts"],
        backoff       = Backoff(type=row["backoff_type"], delay_seconds=row["backoff_delay"]),
        run_at        = datetime.fromisoformat(row["run_at"]),
        created_at    = datetime.fromisoformat(row["created_at"]),
        updated_at    = datetime.fromisoformat(row["updated_at"]),
        locked_until  = datetime.fromisoformat(row["locked_until"]) if row["locked_until"] else None,
        worker_id     = row["worker_id"],
        stalled_count = row["stalled_count"],
        failed_reason = row["failed_reason"],
    )
