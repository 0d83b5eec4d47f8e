# recovery/observer.py
import logging

from charla.queue.base import WorkQueue
from charla.queue.models import QueueTask

logger = logging.getLogger(__name__)


class StallObserver:
    """
    Solo observabilidad: escucha los eventos de la cola y los registra.
    La cola ya reintenta las tareas colgadas por su cuenta; aquí no se
    corrige nada ni se guarda estado.
    """

    def __init__(self, queue: WorkQueue):
        self._queue = queue

    def attach(self) -> None:
        self._queue.on_stalled(self.on_stalled)
        self._queue.on_failed(self.on_failed)
        self._queue.on_completed(self.on_completed)

    def on_stalled(self, task: QueueTask) -> None:
        logger.warning("Tarea %s colgada (job %s), la cola la reintentará", task.id, task.job_id)

    def on_failed(self, task: QueueTask, error: Exception) -> None:
        # Terminal: la cola ya no reintenta
        logger.error(
            "Tarea %s (job %s) falló definitivamente tras %d intentos: %s",
            task.id, task.job_id, task.attempts_made, error,
        )

    def on_completed(self, task: QueueTask) -> None:
        logger.info("Tarea %s (job %s) completada", task.id, task.job_id)
