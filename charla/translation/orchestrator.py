# translation/orchestrator.py
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from charla.storage.base import TranslationStore
from charla.storage.models import (
    Content, SourceType, StoredAnalysis, StoredJob, StoredTranslation,
    StructuredContent, TextContent,
)
from charla.translation.engine import TranslationBatchEngine
from charla.translation.locales import (
    ORIGINAL_LOCALE, Locale, UnsupportedLocaleError,
    get_locale_by_code, require_locale,
)

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Resultados que consume el CLI
# ------------------------------------------------------------------

@dataclass
class TranslateConversationResult:
    transcription_id: str
    locale_code:      str
    locale_name:      str
    count:            int
    translations:     list[StoredTranslation] = field(default_factory=list)


@dataclass
class LocaleStatus:
    code:                    str
    name:                    str
    native_name:             str
    has_summary_translation: bool
    translated_asset_count:  int
    total_asset_count:       int
    last_translated_at:      Optional[datetime]


@dataclass
class TranslationStatus:
    transcription_id:  str
    original_locale:   Optional[str]
    available_locales: list[LocaleStatus]
    preferred_locale:  str


# ------------------------------------------------------------------
# Errores propios del orquestador
# ------------------------------------------------------------------

class TranscriptionNotFoundError(Exception):
    """La transcripción no existe o no pertenece al usuario."""
    pass


# ------------------------------------------------------------------
# Orquestador
# ------------------------------------------------------------------

class TranslationOrchestrator:
    """
    Decide qué contenido de una conversación hay que traducir y lo
    coordina. No traduce nada por sí mismo: delega en el motor.

    Responsabilidades:
    - Chequeo de propiedad y de idioma antes de cualquier efecto
    - Tareas de resumen y de análisis en paralelo
    - Idempotencia: lo ya traducido no se vuelve a traducir
    - Propagar contenido nuevo a los idiomas ya usados
    """

    def __init__(
        self,
        store:         TranslationStore,
        engine:        TranslationBatchEngine,
        translated_by: str                             = "charla",
        clock:         Optional[Callable[[], datetime]] = None,
    ):
        self._store         = store
        self._engine        = engine
        self._translated_by = translated_by
        self._clock         = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Traducción de una conversación
    # ------------------------------------------------------------------

    async def translate_conversation(
        self,
        job_id:            str,
        user_id:           str,
        target_locale:     str,
        translate_summary: bool                = True,
        translate_assets:  bool                = True,
        asset_ids:         Optional[list[str]] = None,
        force_retranslate: bool                = False,
    ) -> TranslateConversationResult:
        """
        Punto de entrada principal. Idempotente: una segunda llamada sin
        force_retranslate no crea ninguna traducción nueva.
        """
        job    = await self._require_job(job_id, user_id)
        locale = require_locale(target_locale)

        if force_retranslate:
            logger.info(
                "Retraducción forzada de %s a %s, se borran las traducciones existentes",
                job_id, target_locale,
            )
            await self._store.delete_translations_for_locale(job_id, target_locale, user_id)

        now   = self._clock()
        tasks = []
        if translate_summary:
            tasks.append(self._translate_summary_task(job, user_id, locale, now))
        if translate_assets:
            tasks.append(self._translate_assets_task(job_id, user_id, locale, asset_ids, now))

        created: list[StoredTranslation] = []
        if tasks:
            started = time.monotonic()
            logger.info("Lanzando %d tareas de traducción en paralelo para %s", len(tasks), job_id)
            results = await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Tareas de traducción terminadas en %.0fms", (time.monotonic() - started) * 1000)

            errors = [r for r in results if isinstance(r, BaseException)]
            for result in results:
                if not isinstance(result, BaseException):
                    created.extend(result)
            if errors:
                logger.error(
                    "Traducción de %s a %s incompleta: %d creadas, %d tareas fallidas",
                    job_id, target_locale, len(created), len(errors),
                )
                raise errors[0]

        await self._store.update_job(job_id, {"preferred_locale": target_locale, "updated_at": now})

        logger.info(
            "Traducción al %s completada para %s: %d traducciones creadas",
            locale.language, job_id, len(created),
        )
        return TranslateConversationResult(
            transcription_id = job_id,
            locale_code      = locale.code,
            locale_name      = locale.language,
            count            = len(created),
            translations     = created,
        )

    async def _translate_summary_task(
        self, job: StoredJob, user_id: str, locale: Locale, now: datetime,
    ) -> list[StoredTranslation]:
        existing = await self._store.get_translation(
            job.id, SourceType.SUMMARY, job.id, locale.code, user_id,
        )
        if existing:
            logger.info("El resumen de %s ya está traducido al %s", job.id, locale.language)
            return []

        if job.summary_v2:
            content = StructuredContent(await self._engine.translate_summary(job.summary_v2, locale.language))
        elif job.summary and job.summary.strip():
            content = TextContent(await self._engine.translate_text(job.summary, locale.language))
        else:
            logger.debug("La transcripción %s no tiene resumen que traducir", job.id)
            return []

        saved = await self._save(SourceType.SUMMARY, job.id, job.id, user_id, locale, content, now)
        return [saved] if saved else []

    async def _translate_assets_task(
        self,
        job_id:    str,
        user_id:   str,
        locale:    Locale,
        asset_ids: Optional[list[str]],
        now:       datetime,
    ) -> list[StoredTranslation]:
        analyses = await self._store.get_analyses(job_id, user_id)
        if asset_ids is not None:
            wanted   = set(asset_ids)
            analyses = [a for a in analyses if a.id in wanted]

        pending: list[StoredAnalysis] = []
        for analysis in analyses:
            existing = await self._store.get_translation(
                job_id, SourceType.ANALYSIS, analysis.id, locale.code, user_id,
            )
            if not existing:
                pending.append(analysis)

        if not pending:
            logger.info("Los %d análisis de %s ya están traducidos", len(analyses), job_id)
            return []

        logger.info("Traduciendo %d análisis al %s", len(pending), locale.language)
        contents = await self._engine.translate_contents(
            [a.content for a in pending], locale.language,
        )

        created = []
        for analysis, content in zip(pending, contents):
            saved = await self._save(
                SourceType.ANALYSIS, analysis.id, job_id, user_id, locale, content, now,
            )
            if saved:
                created.append(saved)
        return created

    # ------------------------------------------------------------------
    # Propagación de contenido nuevo
    # ------------------------------------------------------------------

    async def propagate_new_content(
        self, asset: StoredAnalysis, job_id: str, user_id: str,
    ) -> list[StoredTranslation]:
        """
        Traduce un análisis recién creado a cada idioma que la conversación
        ya tiene traducido. Best-effort: un idioma que falla no bloquea
        a los demás.
        """
        existing = await self._store.get_translations_by_conversation(job_id, user_id)
        if not existing:
            return []

        codes = list(dict.fromkeys(t.locale_code for t in existing))
        logger.info(
            "Propagando el análisis %s a %d idioma(s): %s",
            asset.id, len(codes), ", ".join(codes),
        )

        created = []
        now     = self._clock()
        for code in codes:
            locale = get_locale_by_code(code)
            if locale is None:
                logger.warning("Código de idioma desconocido: %s, se omite", code)
                continue

            try:
                already = await self._store.get_translation(
                    job_id, SourceType.ANALYSIS, asset.id, code, user_id,
                )
                if already:
                    continue
                content = await self._engine.translate_content(asset.content, locale.language)
                saved   = await self._save(
                    SourceType.ANALYSIS, asset.id, job_id, user_id, locale, content, now,
                )
            except Exception as e:
                logger.error(
                    "No se pudo propagar el análisis %s al %s: %s",
                    asset.id, locale.language, e,
                )
                continue

            if saved:
                created.append(saved)
                logger.info("Análisis %s traducido al %s", asset.id, locale.language)
        return created

    # ------------------------------------------------------------------
    # Consultas y mantenimiento
    # ------------------------------------------------------------------

    async def get_translation_status(self, job_id: str, user_id: str) -> TranslationStatus:
        job          = await self._require_job(job_id, user_id)
        translations = await self._store.get_translations_by_conversation(job_id, user_id)
        total_assets = len(await self._store.get_analyses(job_id, user_id))

        by_locale: dict[str, list[StoredTranslation]] = {}
        for translation in translations:
            by_locale.setdefault(translation.locale_code, []).append(translation)

        statuses = []
        for code, items in by_locale.items():
            summary = next((t for t in items if t.source_type == SourceType.SUMMARY), None)
            assets  = [t for t in items if t.source_type == SourceType.ANALYSIS]
            locale  = get_locale_by_code(code)
            statuses.append(LocaleStatus(
                code                    = code,
                name                    = locale.language if locale else code,
                native_name             = locale.native_name if locale else code,
                has_summary_translation = summary is not None,
                translated_asset_count  = len(assets),
                total_asset_count       = total_assets,
                last_translated_at      = (
                    summary.translated_at if summary
                    else assets[0].translated_at if assets
                    else None
                ),
            ))

        # Más reciente primero, los que no tienen fecha al final
        dated    = [s for s in statuses if s.last_translated_at is not None]
        undated  = [s for s in statuses if s.last_translated_at is None]
        statuses = sorted(dated, key=lambda s: s.last_translated_at, reverse=True) + undated

        return TranslationStatus(
            transcription_id  = job_id,
            original_locale   = job.detected_language,
            available_locales = statuses,
            preferred_locale  = job.preferred_locale or ORIGINAL_LOCALE,
        )

    async def get_translations_for_locale(
        self, job_id: str, locale_code: str, user_id: str,
    ) -> list[StoredTranslation]:
        await self._require_job(job_id, user_id)
        return await self._store.get_translations_for_locale(job_id, locale_code, user_id)

    async def delete_translations_for_locale(
        self, job_id: str, locale_code: str, user_id: str,
    ) -> int:
        await self._require_job(job_id, user_id)
        deleted = await self._store.delete_translations_for_locale(job_id, locale_code, user_id)
        logger.info("Borradas %d traducciones %s de %s", deleted, locale_code, job_id)
        return deleted

    async def update_locale_preference(self, job_id: str, locale_code: str, user_id: str) -> None:
        await self._require_job(job_id, user_id)
        if locale_code != ORIGINAL_LOCALE and get_locale_by_code(locale_code) is None:
            raise UnsupportedLocaleError(f"Idioma no soportado: '{locale_code}'")
        await self._store.update_job(job_id, {"preferred_locale": locale_code})

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_job(self, job_id: str, user_id: str) -> StoredJob:
        job = await self._store.get_job_for_user(user_id, job_id)
        if job is None:
            raise TranscriptionNotFoundError(
                f"Transcripción {job_id} no encontrada o sin acceso"
            )
        return job

    async def _save(
        self,
        source_type: SourceType,
        source_id:   str,
        job_id:      str,
        user_id:     str,
        locale:      Locale,
        content:     Content,
        now:         datetime,
    ) -> Optional[StoredTranslation]:
        return await self._store.create_translation(StoredTranslation(
            source_type      = source_type,
            source_id        = source_id,
            transcription_id = job_id,
            user_id          = user_id,
            locale_code      = locale.code,
            locale_name      = locale.language,
            content          = content,
            translated_at    = now,
            translated_by    = self._translated_by,
            created_at       = now,
            updated_at       = now,
        ))
