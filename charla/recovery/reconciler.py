# recovery/reconciler.py
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from charla.queue.base import WorkQueue
from charla.queue.models import (
    TRANSCRIBE_TASK, Backoff, RetryPolicy, TranscriptionPayload,
)
from charla.storage.base import JobStore
from charla.storage.models import DELETE_FIELD, JobStatus, StoredJob

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Configuración y resultado
# ------------------------------------------------------------------

@dataclass
class RecoveryConfig:
    grace_period_seconds:  float = 300.0
    startup_delay_seconds: float = 5.0
    retry_attempts:        int   = 3
    backoff_delay_seconds: float = 60.0

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts = self.retry_attempts,
            backoff  = Backoff(type="exponential", delay_seconds=self.backoff_delay_seconds),
        )


@dataclass
class RecoveryReport:
    found:     int       = 0
    recovered: list[str] = field(default_factory=list)
    skipped:   list[str] = field(default_factory=list)
    failed:    list[str] = field(default_factory=list)


# ------------------------------------------------------------------
# Reconciliador
# ------------------------------------------------------------------

class RecoveryReconciler:
    """
    Cuadra el almacén de jobs con la cola al arrancar el proceso.

    Un job en PROCESSING sin tarea viva en la cola (active, waiting o
    delayed) y con updated_at más viejo que el periodo de gracia es un
    huérfano: se devuelve a PENDING y se encola una tarea nueva con el
    payload original.

    La decisión se toma siempre sobre updated_at, nunca sobre la edad
    del job: un job puede pasar mucho tiempo en PROCESSING trabajando.
    """

    def __init__(
        self,
        job_store: JobStore,
        queue:     WorkQueue,
        config:    Optional[RecoveryConfig]      = None,
        clock:     Callable[[], datetime] | None = None,
    ):
        self._jobs   = job_store
        self._queue  = queue
        self._config = config or RecoveryConfig()
        self._clock  = clock or (lambda: datetime.now(timezone.utc))

    def start(self) -> asyncio.Task:
        """
        Programa una pasada tras startup_delay_seconds, para que la
        conexión con la cola se estabilice. Devuelve la tarea asyncio.
        """
        return asyncio.create_task(self._delayed_reconcile())

    async def _delayed_reconcile(self) -> Optional[RecoveryReport]:
        await asyncio.sleep(self._config.startup_delay_seconds)
        try:
            return await self.reconcile_on_startup()
        except Exception:
            logger.exception("Falló la recuperación de jobs al arrancar")
            return None

    async def reconcile_on_startup(self) -> RecoveryReport:
        report = RecoveryReport()

        logger.info("Buscando jobs huérfanos en PROCESSING...")
        processing = await self._jobs.get_jobs_by_status(JobStatus.PROCESSING)
        report.found = len(processing)
        if not processing:
            logger.info("No hay jobs en PROCESSING, nada que recuperar")
            return report

        logger.info("Encontrados %d jobs en PROCESSING", len(processing))
        live_job_ids = await self._live_job_ids()
        grace        = timedelta(seconds=self._config.grace_period_seconds)

        for job in processing:
            if job.id in live_job_ids:
                logger.debug("Job %s sigue vivo en la cola", job.id)
                continue

            age = self._clock() - _as_utc(job.updated_at)
            if age < grace:
                logger.info(
                    "Job %s actualizado hace %.0fs (< %.0fs), dentro del periodo de gracia",
                    job.id, age.total_seconds(), grace.total_seconds(),
                )
                report.skipped.append(job.id)
                continue

            try:
                if await self._recover(job):
                    report.recovered.append(job.id)
                else:
                    report.skipped.append(job.id)
            except Exception:
                logger.exception("No se pudo recuperar el job %s", job.id)
                report.failed.append(job.id)

        logger.info(
            "Recuperación terminada: %d recuperados, %d omitidos, %d con error",
            len(report.recovered), len(report.skipped), len(report.failed),
        )
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _live_job_ids(self) -> set[str]:
        active, waiting, delayed = await asyncio.gather(
            self._queue.get_active(),
            self._queue.get_waiting(),
            self._queue.get_delayed(),
        )
        return {
            task.job_id
            for task in (*active, *waiting, *delayed)
            if task.job_id is not None
        }

    async def _recover(self, job: StoredJob) -> bool:
        """
        Devuelve False si otro proceso tocó el job entre la consulta y el
        reset (el compare-and-swap no aplica). Propaga si falla el encolado.
        """
        logger.warning(
            "Job huérfano %s (usuario %s, actualizado %s), reencolando",
            job.id, job.user_id, job.updated_at.isoformat(),
        )

        payload  = TranscriptionPayload(
            job_id             = job.id,
            user_id            = job.user_id,
            file_url           = job.file_url,
            context            = job.context,
            selected_templates = list(job.selected_templates),
        )
        reset_at = self._clock()

        swapped = await self._jobs.update_job(
            job.id,
            {"status": JobStatus.PENDING, "error": DELETE_FIELD, "updated_at": reset_at},
            expected_status     = JobStatus.PROCESSING,
            expected_updated_at = job.updated_at,
        )
        if not swapped:
            logger.info("Job %s cambió durante la recuperación, se omite", job.id)
            return False

        task_id = f"recovery-{job.id}-{int(reset_at.timestamp() * 1000)}"
        try:
            await self._queue.enqueue(
                TRANSCRIBE_TASK,
                payload.to_dict(),
                task_id = task_id,
                policy  = self._config.retry_policy,
            )
        except Exception:
            # Deshace el reset para que la próxima pasada lo vuelva a ver
            restored = await self._jobs.update_job(
                job.id,
                {
                    "status":     JobStatus.PROCESSING,
                    "error":      job.error if job.error is not None else DELETE_FIELD,
                    "updated_at": job.updated_at,
                },
                expected_status     = JobStatus.PENDING,
                expected_updated_at = reset_at,
            )
            if not restored:
                logger.error("Job %s quedó en PENDING sin tarea en la cola", job.id)
            raise

        logger.info("Job %s reencolado como %s", job.id, task_id)
        return True


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
