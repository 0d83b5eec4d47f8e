# tests/queue/test_sqlite_queue.py
import pytest

from charla.queue.models import (
    TRANSCRIBE_TASK, Backoff, RetryPolicy, StalledLimitError, TaskState,
)

pytestmark = pytest.mark.anyio

PAYLOAD = {"job_id": "J1", "user_id": "u1", "file_url": "/a.mp3"}


def policy(attempts: int, delay: float = 60) -> RetryPolicy:
    return RetryPolicy(attempts=attempts, backoff=Backoff(type="exponential", delay_seconds=delay))


# ------------------------------------------------------------------
# Encolado
# ------------------------------------------------------------------

class TestEnqueue:

    async def test_tarea_nueva_queda_waiting(self, queue):
        task = await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1")
        assert task.state == TaskState.WAITING
        assert task.job_id == "J1"
        assert [t.id for t in await queue.get_waiting()] == ["T1"]

    async def test_id_duplicado_no_crea_otra_tarea(self, queue):
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1")
        again = await queue.enqueue(TRANSCRIBE_TASK, {"job_id": "otro"}, task_id="T1")

        assert again.payload == PAYLOAD
        counts = await queue.get_counts()
        assert counts[TaskState.WAITING] == 1

    async def test_sin_id_genera_uno(self, queue):
        a = await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD)
        b = await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD)
        assert a.id != b.id

    async def test_politica_se_guarda_en_la_tarea(self, queue):
        task = await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1", policy=policy(3, 30))
        assert task.max_attempts == 3
        assert task.backoff.delay_seconds == 30


# ------------------------------------------------------------------
# Consumo
# ------------------------------------------------------------------

class TestClaim:

    async def test_claim_marca_active_con_worker(self, queue):
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1")
        task = await queue.claim_next("w1", lock_seconds=30)

        assert task.state == TaskState.ACTIVE
        assert task.worker_id == "w1"
        assert task.locked_until is not None
        assert [t.id for t in await queue.get_active()] == ["T1"]

    async def test_cola_vacia_devuelve_none(self, queue):
        assert await queue.claim_next("w1", lock_seconds=30) is None

    async def test_una_tarea_no_se_reclama_dos_veces(self, queue):
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1")
        assert await queue.claim_next("w1", lock_seconds=30) is not None
        assert await queue.claim_next("w2", lock_seconds=30) is None

    async def test_extend_lock_solo_para_el_dueño(self, queue):
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1")
        await queue.claim_next("w1", lock_seconds=30)
        assert await queue.extend_lock("T1", "w1", 30) is True
        assert await queue.extend_lock("T1", "w2", 30) is False


class TestCompleteAndFail:

    async def test_complete_emite_evento(self, queue):
        completed = []
        queue.on_completed(completed.append)
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1")
        await queue.claim_next("w1", lock_seconds=30)

        task = await queue.complete("T1", worker_id="w1")

        assert task.state == TaskState.COMPLETED
        assert [t.id for t in completed] == ["T1"]

    async def test_fallo_con_reintentos_pasa_a_delayed(self, queue):
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1", policy=policy(3, 60))
        await queue.claim_next("w1", lock_seconds=30)

        task = await queue.fail("T1", RuntimeError("boom"), worker_id="w1")

        assert task.state == TaskState.DELAYED
        assert task.attempts_made == 1
        assert task.failed_reason == "boom"
        assert [t.id for t in await queue.get_delayed()] == ["T1"]
        # el backoff aún no venció
        assert await queue.claim_next("w1", lock_seconds=30) is None

    async def test_delayed_vencida_se_puede_reclamar(self, queue):
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1", policy=policy(2, 0))
        await queue.claim_next("w1", lock_seconds=30)
        await queue.fail("T1", RuntimeError("boom"), worker_id="w1")

        task = await queue.claim_next("w1", lock_seconds=30)

        assert task.id == "T1"
        assert task.attempts_made == 1

    async def test_ultimo_intento_pasa_a_failed_y_emite(self, queue):
        failed = []
        queue.on_failed(lambda task, error: failed.append((task.id, str(error))))
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1", policy=policy(1))
        await queue.claim_next("w1", lock_seconds=30)

        task = await queue.fail("T1", RuntimeError("boom"), worker_id="w1")

        assert task.state == TaskState.FAILED
        assert failed == [("T1", "boom")]

    async def test_fallo_de_otro_worker_se_ignora(self, queue):
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1")
        await queue.claim_next("w1", lock_seconds=30)
        assert await queue.fail("T1", RuntimeError("boom"), worker_id="w2") is None
        assert (await queue.get_task("T1")).state == TaskState.ACTIVE

    async def test_handler_que_lanza_no_rompe_la_cola(self, queue):
        def broken(task):
            raise RuntimeError("handler roto")

        queue.on_completed(broken)
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1")
        await queue.claim_next("w1", lock_seconds=30)

        task = await queue.complete("T1")

        assert task.state == TaskState.COMPLETED


# ------------------------------------------------------------------
# Tareas colgadas
# ------------------------------------------------------------------

class TestStalled:

    async def test_lock_vencido_vuelve_a_waiting(self, queue):
        stalled = []
        queue.on_stalled(stalled.append)
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1")
        await queue.claim_next("w1", lock_seconds=-1)

        requeued = await queue.check_stalled(max_stalled_count=1)

        assert [t.id for t in requeued] == ["T1"]
        assert requeued[0].state == TaskState.WAITING
        assert requeued[0].stalled_count == 1
        assert [t.id for t in stalled] == ["T1"]

    async def test_lock_vigente_no_es_stalled(self, queue):
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1")
        await queue.claim_next("w1", lock_seconds=30)
        assert await queue.check_stalled() == []

    async def test_supera_el_limite_pasa_a_failed(self, queue):
        failed = []
        queue.on_failed(lambda task, error: failed.append((task, error)))
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1")

        await queue.claim_next("w1", lock_seconds=-1)
        await queue.check_stalled(max_stalled_count=1)
        await queue.claim_next("w1", lock_seconds=-1)
        await queue.check_stalled(max_stalled_count=1)

        task = await queue.get_task("T1")
        assert task.state == TaskState.FAILED
        assert task.failed_reason == "job stalled more than allowable limit"
        assert len(failed) == 1
        assert isinstance(failed[0][1], StalledLimitError)

    @pytest.mark.parametrize("max_stalled_count", [0, 1])
    async def test_lock_renovado_tras_la_lectura_no_se_toca(self, queue, monkeypatch, max_stalled_count):
        events = []
        queue.on_failed(lambda task, error: events.append(("failed", task.id)))
        queue.on_stalled(lambda task: events.append(("stalled", task.id)))
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1")
        await queue.claim_next("w1", lock_seconds=-1)
        fetch = queue._fetch

        async def renewed_after_read(sql, params=()):
            rows = await fetch(sql, params)
            await queue.extend_lock("T1", "w1", lock_seconds=30)
            return rows

        monkeypatch.setattr(queue, "_fetch", renewed_after_read)

        assert await queue.check_stalled(max_stalled_count=max_stalled_count) == []

        monkeypatch.setattr(queue, "_fetch", fetch)
        task = await queue.get_task("T1")
        assert task.state == TaskState.ACTIVE
        assert task.worker_id == "w1"
        assert events == []

    async def test_fallo_de_una_tarea_reasignada_no_emite(self, queue, monkeypatch):
        failed = []
        queue.on_failed(lambda task, error: failed.append(task.id))
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1", policy=policy(1))
        await queue.claim_next("w1", lock_seconds=-1)
        get_task = queue.get_task

        async def reassigned_after_read(task_id):
            task = await get_task(task_id)
            monkeypatch.setattr(queue, "get_task", get_task)
            await queue.check_stalled(max_stalled_count=5)
            await queue.claim_next("w2", lock_seconds=30)
            return task

        monkeypatch.setattr(queue, "get_task", reassigned_after_read)

        assert await queue.fail("T1", RuntimeError("timeout")) is None

        task = await get_task("T1")
        assert task.state == TaskState.ACTIVE
        assert task.worker_id == "w2"
        assert failed == []


class TestCounts:

    async def test_get_counts_incluye_todos_los_estados(self, queue):
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T1")
        await queue.enqueue(TRANSCRIBE_TASK, PAYLOAD, task_id="T2")
        await queue.claim_next("w1", lock_seconds=30)

        counts = await queue.get_counts()

        assert set(counts) == set(TaskState)
        assert counts[TaskState.ACTIVE] == 1
        assert counts[TaskState.WAITING] == 1
        assert counts[TaskState.FAILED] == 0
