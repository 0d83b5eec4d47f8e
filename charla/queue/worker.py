# queue/worker.py
import asyncio
import contextlib
import logging
import uuid
from typing import Awaitable, Callable

from charla.queue.models import QueueTask
from charla.queue.sqlite_queue import SqliteWorkQueue

logger = logging.getLogger(__name__)

TaskHandler = Callable[[QueueTask], Awaitable[None]]


class QueueWorker:
    """
    Consume tareas de la cola y las despacha al handler de su task_type.

    - concurrency slots independientes, cada uno procesa una tarea a la vez
    - mientras una tarea corre, su lock se renueva cada lock_seconds / 2
    - un bucle aparte revisa tareas colgadas cada stalled_interval
    - stop() deja terminar la tarea en curso y sale del bucle
    """

    def __init__(
        self,
        queue:             SqliteWorkQueue,
        handlers:          dict[str, TaskHandler],
        concurrency:       int   = 1,
        poll_interval:     float = 1.0,
        lock_seconds:      float = 30.0,
        stalled_interval:  float = 30.0,
        max_stalled_count: int   = 1,
        worker_id:         str | None = None,
    ):
        self._queue             = queue
        self._handlers          = handlers
        self._concurrency       = max(1, concurrency)
        self._poll_interval     = poll_interval
        self._lock_seconds      = lock_seconds
        self._stalled_interval  = stalled_interval
        self._max_stalled_count = max_stalled_count
        self.worker_id          = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._stop_event        = asyncio.Event()

    # ------------------------------------------------------------------
    # API pública
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Bucle principal. Vuelve cuando alguien llama a stop()."""
        logger.info(
            "Worker %s arrancando (%d slots, handlers: %s)",
            self.worker_id, self._concurrency, ", ".join(sorted(self._handlers)),
        )
        self._stop_event.clear()
        stalled_loop = asyncio.create_task(self._stalled_loop())
        try:
            await asyncio.gather(*(self._slot(i) for i in range(self._concurrency)))
        finally:
            stalled_loop.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stalled_loop
        logger.info("Worker %s detenido", self.worker_id)

    def stop(self) -> None:
        self._stop_event.set()

    async def run_once(self) -> bool:
        """Procesa como mucho una tarea. True si había alguna lista."""
        task = await self._queue.claim_next(self.worker_id, self._lock_seconds)
        if task is None:
            return False
        await self.process(task)
        return True

    async def process(self, task: QueueTask) -> None:
        handler = self._handlers.get(task.task_type)
        if handler is None:
            await self._queue.fail(
                task.id, LookupError(f"Sin handler para el tipo '{task.task_type}'"),
                worker_id=self.worker_id,
            )
            return

        logger.debug("Procesando tarea %s (%s), intento %d", task.id, task.task_type, task.attempts_made + 1)
        heartbeat = asyncio.create_task(self._keep_lock(task))
        try:
            await handler(task)
        except Exception as e:
            logger.warning("Tarea %s falló: %s", task.id, e)
            await self._queue.fail(task.id, e, worker_id=self.worker_id)
        else:
            await self._queue.complete(task.id, worker_id=self.worker_id)
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

    # ------------------------------------------------------------------
    # Bucles internos
    # ------------------------------------------------------------------

    async def _slot(self, index: int) -> None:
        while not self._stop_event.is_set():
            try:
                had_task = await self.run_once()
            except Exception:
                logger.exception("Slot %d del worker %s: error inesperado", index, self.worker_id)
                had_task = False
            if not had_task:
                await self._sleep(self._poll_interval)

    async def _stalled_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self._queue.check_stalled(self._max_stalled_count)
            except Exception:
                logger.exception("Error revisando tareas colgadas")
            await self._sleep(self._stalled_interval)

    async def _keep_lock(self, task: QueueTask) -> None:
        interval = max(self._lock_seconds / 2, 0.01)
        while True:
            await asyncio.sleep(interval)
            if not await self._queue.extend_lock(task.id, self.worker_id, self._lock_seconds):
                logger.warning("Worker %s perdió el lock de la tarea %s", self.worker_id, task.id)
                return

    async def _sleep(self, seconds: float) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
