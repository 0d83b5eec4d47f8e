# storage/repository.py
import asyncio
import json
import logging
import sqlite3
import threading
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from charla.storage.base import JobStore, TranslationStore
from charla.storage.db import get_connection, init_schema
from charla.storage.models import (
    DELETE_FIELD,
    Content, JobStatus, SourceType,
    StoredAnalysis, StoredJob, StoredTranslation,
    content_from_dict, content_to_dict,
)

logger = logging.getLogger(__name__)

# Columnas que update_job acepta. El resto se rechaza con ValueError.
_UPDATABLE_JOB_FIELDS = {
    "status", "error", "file_url", "context", "selected_templates",
    "transcript_text", "summary", "summary_v2", "detected_language",
    "preferred_locale", "completed_at", "updated_at",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Repository(JobStore, TranslationStore):
    """
    Única interfaz entre el resto de la aplicación y SQLite.
    Recibe un db_path para facilitar el testing con :memory:.

    Todos los métodos públicos son async: la sentencia corre en un hilo
    (asyncio.to_thread) y un lock serializa el acceso a la conexión.
    """

    def __init__(self, db_path: str | None = None):
        self._conn = get_connection(db_path)
        self._lock = threading.Lock()
        init_schema(self._conn)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def create_job(
        self,
        user_id:            str,
        file_url:           str,
        context:            str | None       = None,
        selected_templates: list[str] | None = None,
        status:             JobStatus        = JobStatus.PENDING,
        job_id:             str | None       = None,
    ) -> str:
        """Inserta un job nuevo y devuelve su id."""
        job_id = job_id or uuid.uuid4().hex
        now    = _ts(utcnow())
        await self._execute(
            """
            INSERT INTO jobs (id, user_id, status, file_url, context,
                              selected_templates, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (job_id, user_id, status.value, file_url, context,
             json.dumps(selected_templates or []), now, now),
        )
        return job_id

    async def get_job(self, job_id: str) -> StoredJob | None:
        row = await self._fetchone("SELECT * FROM jobs WHERE id = ?", (job_id,))
        return self._row_to_job(row) if row else None

    async def get_job_for_user(self, user_id: str, job_id: str) -> StoredJob | None:
        """Lookup con chequeo de propiedad: un job ajeno se comporta como inexistente."""
        row = await self._fetchone(
            "SELECT * FROM jobs WHERE id = ? AND user_id = ?", (job_id, user_id)
        )
        return self._row_to_job(row) if row else None

    async def get_jobs_by_status(self, status: JobStatus) -> list[StoredJob]:
        rows = await self._fetchall(
            "SELECT * FROM jobs WHERE status = ? ORDER BY updated_at ASC",
            (status.value,),
        )
        return [self._row_to_job(r) for r in rows]

    async def update_job(
        self,
        job_id:              str,
        fields:              dict,
        expected_status:     JobStatus | None = None,
        expected_updated_at: datetime | None  = None,
    ) -> bool:
        if not fields:
            raise ValueError("update_job necesita al menos un campo")

        unknown = set(fields) - _UPDATABLE_JOB_FIELDS
        if unknown:
            raise ValueError(f"Campos no actualizables: {sorted(unknown)}")

        values = dict(fields)
        values.setdefault("updated_at", utcnow())

        assignments = []
        params: list = []
        for column, value in values.items():
            assignments.append(f"{column} = ?")
            params.append(_to_column(column, value))

        sql = f"UPDATE jobs SET {', '.join(assignments)} WHERE id = ?"
        params.append(job_id)

        if expected_status is not None:
            sql += " AND status = ?"
            params.append(expected_status.value)
        if expected_updated_at is not None:
            sql += " AND updated_at = ?"
            params.append(_ts(expected_updated_at))

        changed = await self._execute(sql, tuple(params))
        return changed == 1

    # ------------------------------------------------------------------
    # Analyses
    # ------------------------------------------------------------------

    async def create_analysis(
        self,
        transcription_id: str,
        user_id:          str,
        template_name:    str,
        content:          Content,
    ) -> StoredAnalysis:
        analysis = StoredAnalysis(
            id               = uuid.uuid4().hex,
            transcription_id = transcription_id,
            user_id          = user_id,
            template_name    = template_name,
            content          = content,
            created_at       = utcnow(),
        )
        await self._execute(
            """
            INSERT INTO analyses (id, transcription_id, user_id, template_name,
                                  content_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (analysis.id, transcription_id, user_id, template_name,
             json.dumps(content_to_dict(content)), _ts(analysis.created_at)),
        )
        return analysis

    async def get_analysis(self, analysis_id: str) -> StoredAnalysis | None:
        row = await self._fetchone("SELECT * FROM analyses WHERE id = ?", (analysis_id,))
        return self._row_to_analysis(row) if row else None

    async def get_analyses(self, transcription_id: str, user_id: str) -> list[StoredAnalysis]:
        rows = await self._fetchall(
            """
            SELECT * FROM analyses
            WHERE transcription_id = ? AND user_id = ?
            ORDER BY created_at ASC
            """,
            (transcription_id, user_id),
        )
        return [self._row_to_analysis(r) for r in rows]

    # ------------------------------------------------------------------
    # Translations
    # ------------------------------------------------------------------

    async def create_translation(self, translation: StoredTranslation) -> StoredTranslation | None:
        """
        INSERT OR IGNORE sobre la clave única: si dos tareas compiten por
        la misma traducción, solo una la crea y la otra recibe None.
        """
        translation_id = translation.id or uuid.uuid4().hex
        changed = await self._execute(
            """
            INSERT OR IGNORE INTO translations
                (id, source_type, source_id, transcription_id, user_id,
                 locale_code, locale_name, content_json, translated_at,
                 translated_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                translation_id,
                translation.source_type.value,
                translation.source_id,
                translation.transcription_id,
                translation.user_id,
                translation.locale_code,
                translation.locale_name,
                json.dumps(content_to_dict(translation.content)),
                _ts(translation.translated_at),
                translation.translated_by,
                _ts(translation.created_at),
                _ts(translation.updated_at),
            ),
        )
        if changed != 1:
            logger.debug(
                "Traducción ya existente para %s %s (%s), no se crea",
                translation.source_type.value, translation.source_id, translation.locale_code,
            )
            return None

        translation.id = translation_id
        logger.debug(
            "Creada traducción %s para %s %s (%s)",
            translation_id, translation.source_type.value,
            translation.source_id, translation.locale_code,
        )
        return translation

    async def get_translation(
        self,
        transcription_id: str,
        source_type:      SourceType,
        source_id:        str,
        locale_code:      str,
        user_id:          str,
    ) -> StoredTranslation | None:
        row = await self._fetchone(
            """
            SELECT * FROM translations
            WHERE transcription_id = ? AND source_type = ? AND source_id = ?
              AND locale_code = ? AND user_id = ?
            LIMIT 1
            """,
            (transcription_id, source_type.value, source_id, locale_code, user_id),
        )
        return self._row_to_translation(row) if row else None

    async def get_translations_by_conversation(
        self, transcription_id: str, user_id: str,
    ) -> list[StoredTranslation]:
        rows = await self._fetchall(
            """
            SELECT * FROM translations
            WHERE transcription_id = ? AND user_id = ?
            ORDER BY created_at ASC
            """,
            (transcription_id, user_id),
        )
        return [self._row_to_translation(r) for r in rows]

    async def get_translations_for_locale(
        self, transcription_id: str, locale_code: str, user_id: str,
    ) -> list[StoredTranslation]:
        rows = await self._fetchall(
            """
            SELECT * FROM translations
            WHERE transcription_id = ? AND locale_code = ? AND user_id = ?
            ORDER BY created_at ASC
            """,
            (transcription_id, locale_code, user_id),
        )
        return [self._row_to_translation(r) for r in rows]

    async def delete_translations_for_locale(
        self, transcription_id: str, locale_code: str, user_id: str,
    ) -> int:
        deleted = await self._execute(
            """
            DELETE FROM translations
            WHERE transcription_id = ? AND locale_code = ? AND user_id = ?
            """,
            (transcription_id, locale_code, user_id),
        )
        if deleted:
            logger.info(
                "Borradas %d traducciones %s de la transcripción %s",
                deleted, locale_code, transcription_id,
            )
        return deleted

    # ------------------------------------------------------------------
    # Quota
    # ------------------------------------------------------------------

    async def add_token_usage(self, model: str, tokens: int) -> None:
        """
        Upsert: si ya existe el registro de hoy lo incrementa,
        si no existe lo crea.
        """
        today = date.today().isoformat()
        await self._execute(
            """
            INSERT INTO quota_usage (model, date, tokens_used)
            VALUES (?, ?, ?)
            ON CONFLICT (model, date)
            DO UPDATE SET tokens_used = tokens_used + excluded.tokens_used
            """,
            (model, today, tokens),
        )

    async def get_token_usage_today(self, model: str) -> int:
        today = date.today().isoformat()
        row = await self._fetchone(
            "SELECT tokens_used FROM quota_usage WHERE model = ? AND date = ?",
            (model, today),
        )
        return row["tokens_used"] if row else 0

    # ------------------------------------------------------------------
    # Acceso a la conexión
    # ------------------------------------------------------------------

    async def _execute(self, sql: str, params: tuple = ()) -> int:
        """Sentencia de escritura en su propia transacción. Devuelve rowcount."""
        def run() -> int:
            with self._lock, self._conn:
                return self._conn.execute(sql, params).rowcount

        return await asyncio.to_thread(run)

    async def _fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        def run():
            with self._lock:
                return self._conn.execute(sql, params).fetchone()

        return await asyncio.to_thread(run)

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        def run():
            with self._lock:
                return self._conn.execute(sql, params).fetchall()

        return await asyncio.to_thread(run)

    # ------------------------------------------------------------------
    # Mapeo de rows a dataclasses
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> StoredJob:
        return StoredJob(
            id                 = row["id"],
            user_id            = row["user_id"],
            status             = JobStatus(row["status"]),
            file_url           = row["file_url"],
            created_at         = datetime.fromisoformat(row["created_at"]),
            updated_at         = datetime.fromisoformat(row["updated_at"]),
            context            = row["context"],
            selected_templates = json.loads(row["selected_templates"] or "[]"),
            error              = row["error"],
            transcript_text    = row["transcript_text"],
            summary            = row["summary"],
            summary_v2         = json.loads(row["summary_v2"]) if row["summary_v2"] else None,
            detected_language  = row["detected_language"],
            preferred_locale   = row["preferred_locale"],
            completed_at       = _parse_optional_datetime(row["completed_at"]),
        )

    @staticmethod
    def _row_to_analysis(row: sqlite3.Row) -> StoredAnalysis:
        return StoredAnalysis(
            id               = row["id"],
            transcription_id = row["transcription_id"],
            user_id          = row["user_id"],
            template_name    = row["template_name"],
            content          = content_from_dict(json.loads(row["content_json"])),
            created_at       = datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_translation(row: sqlite3.Row) -> StoredTranslation:
        return StoredTranslation(
            id               = row["id"],
            source_type      = SourceType(row["source_type"]),
            source_id        = row["source_id"],
            transcription_id = row["transcription_id"],
            user_id          = row["user_id"],
            locale_code      = row["locale_code"],
            locale_name      = row["locale_name"],
            content          = content_from_dict(json.loads(row["content_json"])),
            translated_at    = datetime.fromisoformat(row["translated_at"]),
            translated_by    = row["translated_by"],
            created_at       = datetime.fromisoformat(row["created_at"]),
            updated_at       = datetime.fromisoformat(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Cleanup (para tests)
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._conn.close()


def _to_column(column: str, value):
    """Serializa un valor de update_job al formato de la columna."""
    if value is DELETE_FIELD:
        return None
    if value is None:
        raise ValueError(
            f"'{column}' = None no está permitido: usa DELETE_FIELD para borrar el campo"
        )
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _ts(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def _parse_optional_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _ts(value: datetime) -> str:
    # Formato fijo: updated_at se compara como texto en el compare-and-swap
    return value.isoformat(timespec="microseconds")
