# queue/base.py
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from charla.queue.models import QueueTask, RetryPolicy, TaskState

logger = logging.getLogger(__name__)

StalledHandler   = Callable[[QueueTask], None]
FailedHandler    = Callable[[QueueTask, Exception], None]
CompletedHandler = Callable[[QueueTask], None]


class WorkQueue(ABC):
    """
    Contrato de la cola de trabajo.
    El reconciliador y el observer solo hablan con esta interfaz,
    nunca con la implementación concreta del broker.

    Los eventos se registran con on_stalled / on_failed / on_completed.
    Una excepción dentro de un handler se registra en el log y no llega
    nunca al código que emitió el evento.
    """

    def __init__(self):
        self._handlers: dict[str, list[Callable]] = {
            "stalled":   [],
            "failed":    [],
            "completed": [],
        }

    @abstractmethod
    async def enqueue(
        self,
        task_type: str,
        payload:   dict,
        task_id:   Optional[str]         = None,
        policy:    Optional[RetryPolicy] = None,
    ) -> QueueTask:
        """
        Añade una tarea. Si task_id ya existe no se crea nada y se
        devuelve la tarea existente (deduplicación silenciosa).
        """
        ...

    @abstractmethod
    async def get_active(self) -> list[QueueTask]:
        ...

    @abstractmethod
    async def get_waiting(self) -> list[QueueTask]:
        ...

    @abstractmethod
    async def get_delayed(self) -> list[QueueTask]:
        ...

    @abstractmethod
    async def get_counts(self) -> dict[TaskState, int]:
        ...

    # ------------------------------------------------------------------
    # Eventos
    # ------------------------------------------------------------------

    def on_stalled(self, handler: StalledHandler) -> None:
        self._handlers["stalled"].append(handler)

    def on_failed(self, handler: FailedHandler) -> None:
        self._handlers["failed"].append(handler)

    def on_completed(self, handler: CompletedHandler) -> None:
        self._handlers["completed"].append(handler)

    def _emit(self, event: str, *args) -> None:
        for handler in self._handlers.get(event, []):
            try:
                handler(*args)
            except Exception:
                logger.exception("Handler de '%s' lanzó una excepción; se ignora", event)
