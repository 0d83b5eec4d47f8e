# tests/storage/test_repository.py
from datetime import datetime, timedelta, timezone

import pytest

from charla.storage.models import (
    DELETE_FIELD,
    JobStatus, SourceType, StoredTranslation,
    StructuredContent, TextContent,
)

pytestmark = pytest.mark.anyio


def make_translation(job_id: str, locale: str = "es-ES", source_id: str | None = None,
                     source_type: SourceType = SourceType.SUMMARY) -> StoredTranslation:
    now = datetime.now(timezone.utc)
    return StoredTranslation(
        source_type      = source_type,
        source_id        = source_id or job_id,
        transcription_id = job_id,
        user_id          = "u1",
        locale_code      = locale,
        locale_name      = "español",
        content          = TextContent("Hola mundo"),
        translated_at    = now,
        translated_by    = "fake",
        created_at       = now,
        updated_at       = now,
    )


# ------------------------------------------------------------------
# Jobs
# ------------------------------------------------------------------

class TestJobs:

    async def test_create_job_devuelve_id(self, repo):
        job_id = await repo.create_job("u1", "/audio/a.mp3")
        assert isinstance(job_id, str)
        job = await repo.get_job(job_id)
        assert job.status == JobStatus.PENDING
        assert job.selected_templates == []

    async def test_create_job_con_id_explicito(self, repo):
        await repo.create_job("u1", "/audio/a.mp3", job_id="J1", context="reunión",
                              selected_templates=["actas"])
        job = await repo.get_job("J1")
        assert job.context == "reunión"
        assert job.selected_templates == ["actas"]

    async def test_get_job_inexistente_devuelve_none(self, repo):
        assert await repo.get_job("no_existe") is None

    async def test_get_job_for_user_ajeno_devuelve_none(self, repo):
        await repo.create_job("u1", "/a.mp3", job_id="J1")
        assert await repo.get_job_for_user("u2", "J1") is None
        assert (await repo.get_job_for_user("u1", "J1")).id == "J1"

    async def test_get_jobs_by_status(self, repo):
        await repo.create_job("u1", "/a.mp3", job_id="J1", status=JobStatus.PROCESSING)
        await repo.create_job("u1", "/b.mp3", job_id="J2")
        jobs = await repo.get_jobs_by_status(JobStatus.PROCESSING)
        assert [j.id for j in jobs] == ["J1"]

    async def test_update_job_refresca_updated_at(self, repo):
        await repo.create_job("u1", "/a.mp3", job_id="J1")
        before = (await repo.get_job("J1")).updated_at
        await repo.update_job("J1", {"status": JobStatus.PROCESSING})
        job = await repo.get_job("J1")
        assert job.status == JobStatus.PROCESSING
        assert job.updated_at >= before

    async def test_update_job_updated_at_explicito(self, repo):
        await repo.create_job("u1", "/a.mp3", job_id="J1")
        old = datetime.now(timezone.utc) - timedelta(minutes=10)
        await repo.update_job("J1", {"updated_at": old})
        assert (await repo.get_job("J1")).updated_at == old


class TestDeleteField:

    async def test_delete_field_deja_el_campo_ausente(self, repo):
        await repo.create_job("u1", "/a.mp3", job_id="J1")
        await repo.update_job("J1", {"error": "boom"})
        await repo.update_job("J1", {"error": DELETE_FIELD})
        assert (await repo.get_job("J1")).error is None

    async def test_string_vacio_no_es_borrado(self, repo):
        await repo.create_job("u1", "/a.mp3", job_id="J1")
        await repo.update_job("J1", {"error": ""})
        assert (await repo.get_job("J1")).error == ""

    async def test_none_rechazado(self, repo):
        await repo.create_job("u1", "/a.mp3", job_id="J1")
        with pytest.raises(ValueError):
            await repo.update_job("J1", {"error": None})

    async def test_campo_desconocido_rechazado(self, repo):
        await repo.create_job("u1", "/a.mp3", job_id="J1")
        with pytest.raises(ValueError):
            await repo.update_job("J1", {"user_id": "u2"})


class TestCompareAndSwap:

    async def test_cas_aplica_si_estado_coincide(self, repo):
        await repo.create_job("u1", "/a.mp3", job_id="J1", status=JobStatus.PROCESSING)
        job = await repo.get_job("J1")
        changed = await repo.update_job(
            "J1", {"status": JobStatus.PENDING},
            expected_status=JobStatus.PROCESSING, expected_updated_at=job.updated_at,
        )
        assert changed is True
        assert (await repo.get_job("J1")).status == JobStatus.PENDING

    async def test_cas_no_aplica_si_estado_cambio(self, repo):
        await repo.create_job("u1", "/a.mp3", job_id="J1", status=JobStatus.COMPLETED)
        changed = await repo.update_job(
            "J1", {"status": JobStatus.PENDING}, expected_status=JobStatus.PROCESSING,
        )
        assert changed is False
        assert (await repo.get_job("J1")).status == JobStatus.COMPLETED

    async def test_cas_no_aplica_si_updated_at_cambio(self, repo):
        await repo.create_job("u1", "/a.mp3", job_id="J1", status=JobStatus.PROCESSING)
        stale = (await repo.get_job("J1")).updated_at - timedelta(seconds=1)
        changed = await repo.update_job(
            "J1", {"status": JobStatus.PENDING},
            expected_status=JobStatus.PROCESSING, expected_updated_at=stale,
        )
        assert changed is False


# ------------------------------------------------------------------
# Analyses
# ------------------------------------------------------------------

class TestAnalyses:

    async def test_create_y_get_analyses_en_orden(self, repo):
        await repo.create_job("u1", "/a.mp3", job_id="J1")
        a1 = await repo.create_analysis("J1", "u1", "actas", TextContent("# Actas"))
        a2 = await repo.create_analysis("J1", "u1", "tareas", StructuredContent({"items": ["a"]}))

        analyses = await repo.get_analyses("J1", "u1")

        assert [a.id for a in analyses] == [a1.id, a2.id]
        assert analyses[0].content == TextContent("# Actas")
        assert analyses[1].content == StructuredContent({"items": ["a"]})

    async def test_analyses_de_otro_usuario_no_aparecen(self, repo):
        await repo.create_job("u1", "/a.mp3", job_id="J1")
        await repo.create_analysis("J1", "u1", "actas", TextContent("x"))
        assert await repo.get_analyses("J1", "u2") == []


# ------------------------------------------------------------------
# Translations
# ------------------------------------------------------------------

class TestTranslations:

    async def test_create_translation_asigna_id(self, repo):
        saved = await repo.create_translation(make_translation("J1"))
        assert saved is not None
        assert saved.id

    async def test_clave_duplicada_devuelve_none(self, repo):
        await repo.create_translation(make_translation("J1"))
        assert await repo.create_translation(make_translation("J1")) is None
        assert len(await repo.get_translations_by_conversation("J1", "u1")) == 1

    async def test_get_translation_por_clave(self, repo):
        await repo.create_translation(make_translation("J1"))
        found = await repo.get_translation("J1", SourceType.SUMMARY, "J1", "es-ES", "u1")
        assert found.content == TextContent("Hola mundo")
        assert await repo.get_translation("J1", SourceType.SUMMARY, "J1", "fr-FR", "u1") is None

    async def test_get_translations_for_locale(self, repo):
        await repo.create_translation(make_translation("J1", "es-ES"))
        await repo.create_translation(make_translation("J1", "fr-FR"))
        found = await repo.get_translations_for_locale("J1", "fr-FR", "u1")
        assert [t.locale_code for t in found] == ["fr-FR"]

    async def test_delete_translations_for_locale_devuelve_cantidad(self, repo):
        await repo.create_translation(make_translation("J1", "es-ES"))
        await repo.create_translation(make_translation("J1", "es-ES", "A1", SourceType.ANALYSIS))
        await repo.create_translation(make_translation("J1", "fr-FR"))

        deleted = await repo.delete_translations_for_locale("J1", "es-ES", "u1")

        assert deleted == 2
        remaining = await repo.get_translations_by_conversation("J1", "u1")
        assert [t.locale_code for t in remaining] == ["fr-FR"]


# ------------------------------------------------------------------
# Quota
# ------------------------------------------------------------------

class TestQuota:

    async def test_token_usage_acumula(self, repo):
        await repo.add_token_usage("claude", 100)
        await repo.add_token_usage("claude", 50)
        assert await repo.get_token_usage_today("claude") == 150

    async def test_modelo_sin_uso_devuelve_cero(self, repo):
        assert await repo.get_token_usage_today("gemini") == 0
