# transcription/processor.py
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from charla.queue.models import QueueTask, TranscriptionPayload
from charla.router.models import CompletionOptions
from charla.router.prompt_builder import build_summary_prompt
from charla.storage.base import JobStore
from charla.storage.models import DELETE_FIELD, JobStatus
from charla.transcription.base import Transcriber
from charla.translation.engine import TranslationBackend

logger = logging.getLogger(__name__)


class TranscriptionProcessor:
    """
    Handler de las tareas 'transcribe' de la cola.

    Idempotente frente a tareas duplicadas (p. ej. dos recuperaciones del
    mismo job): si el job ya está en un estado terminal no hace nada.
    En un fallo que no es el último intento, el job sigue en PROCESSING
    con el error anotado y la excepción se propaga para que la cola
    reintente; en el último intento el job queda FAILED.
    """

    def __init__(
        self,
        job_store:   JobStore,
        transcriber: Transcriber,
        summarizer:  Optional[TranslationBackend]      = None,
        clock:       Optional[Callable[[], datetime]] = None,
    ):
        self._jobs        = job_store
        self._transcriber = transcriber
        self._summarizer  = summarizer
        self._clock       = clock or (lambda: datetime.now(timezone.utc))

    async def handle(self, task: QueueTask) -> None:
        payload = TranscriptionPayload.from_dict(task.payload)
        job     = await self._jobs.get_job(payload.job_id)

        if job is None:
            logger.warning("Tarea %s apunta a un job inexistente (%s), se descarta", task.id, payload.job_id)
            return
        if job.status.is_terminal:
            logger.info("Job %s ya está %s, se ignora la tarea %s", job.id, job.status.value, task.id)
            return

        logger.info("Procesando job %s (tarea %s, intento %d)", job.id, task.id, task.attempts_made + 1)
        await self._jobs.update_job(job.id, {"status": JobStatus.PROCESSING})

        try:
            result  = await self._transcriber.transcribe(payload.file_url, payload.context)
            if result.language:
                logger.info("Idioma detectado en %s: %s", job.id, result.language)

            summary = await self._summarize(result.text, payload.context)

            fields = {
                "status":          JobStatus.COMPLETED,
                "transcript_text": result.text,
                "error":           DELETE_FIELD,
                "completed_at":    self._clock(),
            }
            if summary:
                fields["summary"] = summary
            if result.language:
                fields["detected_language"] = result.language
            await self._jobs.update_job(job.id, fields)

        except Exception as e:
            message = str(e) or "Transcription failed"
            if task.is_final_attempt:
                logger.error("Job %s falló definitivamente: %s", job.id, message)
                await self._jobs.update_job(job.id, {"status": JobStatus.FAILED, "error": message})
            else:
                logger.warning(
                    "Job %s falló en el intento %d/%d: %s",
                    job.id, task.attempts_made + 1, task.max_attempts, message,
                )
                await self._jobs.update_job(job.id, {"error": message})
            raise

        logger.info("Job %s completado", job.id)

    async def _summarize(self, transcript: str, context: Optional[str]) -> Optional[str]:
        if self._summarizer is None or not transcript.strip():
            return None
        response = await self._summarizer.complete(
            build_summary_prompt(context),
            transcript,
            CompletionOptions(max_tokens=4000),
        )
        return response.text.strip() or None
