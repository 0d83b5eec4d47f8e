# tests/transcription/test_processor.py
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from charla.queue.models import Backoff, InvalidPayloadError, QueueTask, TaskState
from charla.storage.models import JobStatus
from charla.transcription.base import TranscriptResult
from charla.transcription.processor import TranscriptionProcessor

pytestmark = pytest.mark.anyio

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_task(job_id: str = "J1", attempts_made: int = 0, max_attempts: int = 3) -> QueueTask:
    return QueueTask(
        id            = f"task-{job_id}",
        task_type     = "transcribe",
        payload       = {"job_id": job_id, "user_id": "u1", "file_url": "/a.mp3", "context": "reunión"},
        state         = TaskState.ACTIVE,
        attempts_made = attempts_made,
        max_attempts  = max_attempts,
        backoff       = Backoff(),
        run_at        = NOW,
        created_at    = NOW,
        updated_at    = NOW,
    )


@pytest.fixture
def transcriber():
    mock = AsyncMock()
    mock.transcribe.return_value = TranscriptResult(text="Speaker 1: hola a todos", language="es")
    return mock


@pytest.fixture
def processor(repo, transcriber, backend):
    return TranscriptionProcessor(repo, transcriber, summarizer=backend, clock=lambda: NOW)


class TestTranscriptionProcessor:

    async def test_job_completado_con_transcripcion_y_resumen(self, processor, repo, transcriber, backend):
        await repo.create_job("u1", "/a.mp3", job_id="J1")
        await repo.update_job("J1", {"error": "intento anterior"})

        await processor.handle(make_task())

        job = await repo.get_job("J1")
        assert job.status == JobStatus.COMPLETED
        assert job.transcript_text == "Speaker 1: hola a todos"
        assert job.summary == "ES:Speaker 1: hola a todos"
        assert job.detected_language == "es"
        assert job.error is None
        assert job.completed_at == NOW
        transcriber.transcribe.assert_awaited_once_with("/a.mp3", "reunión")
        assert "reunión" in backend.calls[0][0]

    async def test_sin_summarizer_no_hay_resumen(self, repo, transcriber):
        processor = TranscriptionProcessor(repo, transcriber)
        await repo.create_job("u1", "/a.mp3", job_id="J1")

        await processor.handle(make_task())

        job = await repo.get_job("J1")
        assert job.status == JobStatus.COMPLETED
        assert job.summary is None

    async def test_fallo_intermedio_deja_processing_y_propaga(self, processor, repo, transcriber):
        transcriber.transcribe.side_effect = ConnectionError("proveedor caído")
        await repo.create_job("u1", "/a.mp3", job_id="J1")

        with pytest.raises(ConnectionError):
            await processor.handle(make_task(attempts_made=0))

        job = await repo.get_job("J1")
        assert job.status == JobStatus.PROCESSING
        assert job.error == "proveedor caído"

    async def test_ultimo_intento_marca_failed(self, processor, repo, transcriber):
        transcriber.transcribe.side_effect = ConnectionError("proveedor caído")
        await repo.create_job("u1", "/a.mp3", job_id="J1")

        with pytest.raises(ConnectionError):
            await processor.handle(make_task(attempts_made=2, max_attempts=3))

        job = await repo.get_job("J1")
        assert job.status == JobStatus.FAILED
        assert job.error == "proveedor caído"

    async def test_error_sin_mensaje_usa_uno_generico(self, processor, repo, transcriber):
        transcriber.transcribe.side_effect = RuntimeError()
        await repo.create_job("u1", "/a.mp3", job_id="J1")

        with pytest.raises(RuntimeError):
            await processor.handle(make_task(attempts_made=2, max_attempts=3))

        assert (await repo.get_job("J1")).error == "Transcription failed"

    @pytest.mark.parametrize("status", [JobStatus.COMPLETED, JobStatus.FAILED])
    async def test_job_terminal_se_ignora(self, processor, repo, transcriber, status):
        await repo.create_job("u1", "/a.mp3", job_id="J1", status=status)

        await processor.handle(make_task())

        transcriber.transcribe.assert_not_called()
        assert (await repo.get_job("J1")).status == status

    async def test_job_inexistente_se_descarta(self, processor, transcriber):
        await processor.handle(make_task("no_existe"))
        transcriber.transcribe.assert_not_called()

    async def test_payload_invalido_lanza_error(self, processor):
        task = make_task()
        task.payload = {"job_id": "J1"}

        with pytest.raises(InvalidPayloadError):
            await processor.handle(task)
