# storage/base.py
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from charla.storage.models import (
    JobStatus, SourceType,
    StoredAnalysis, StoredJob, StoredTranslation,
)


class JobStore(ABC):
    """
    Contrato del almacén de jobs que consumen el reconciliador y el processor.
    El Repository de SQLite lo implementa; los tests pueden usar fakes.
    """

    @abstractmethod
    async def get_jobs_by_status(self, status: JobStatus) -> list[StoredJob]:
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[StoredJob]:
        ...

    @abstractmethod
    async def update_job(
        self,
        job_id:              str,
        fields:              dict,
        expected_status:     Optional[JobStatus] = None,
        expected_updated_at: Optional[datetime]  = None,
    ) -> bool:
        """
        Actualización parcial. Los campos con DELETE_FIELD se borran (NULL).
        Con expected_* actúa como compare-and-swap: solo escribe si la fila
        sigue en ese estado. Devuelve True si la fila cambió.
        """
        ...


class TranslationStore(ABC):
    """Lo que necesita el orquestador de traducciones para persistir y consultar."""

    @abstractmethod
    async def get_job_for_user(self, user_id: str, job_id: str) -> Optional[StoredJob]:
        ...

    @abstractmethod
    async def get_analyses(self, transcription_id: str, user_id: str) -> list[StoredAnalysis]:
        ...

    @abstractmethod
    async def create_translation(self, translation: StoredTranslation) -> Optional[StoredTranslation]:
        """Devuelve None si la clave única ya existía (no se crea nada)."""
        ...

    @abstractmethod
    async def get_translation(
        self,
        transcription_id: str,
        source_type:      SourceType,
        source_id:        str,
        locale_code:      str,
        user_id:          str,
    ) -> Optional[StoredTranslation]:
        ...

    @abstractmethod
    async def get_translations_by_conversation(
        self, transcription_id: str, user_id: str,
    ) -> list[StoredTranslation]:
        ...

    @abstractmethod
    async def get_translations_for_locale(
        self, transcription_id: str, locale_code: str, user_id: str,
    ) -> list[StoredTranslation]:
        ...

    @abstractmethod
    async def delete_translations_for_locale(
        self, transcription_id: str, locale_code: str, user_id: str,
    ) -> int:
        ...

    @abstractmethod
    async def update_job(
        self,
        job_id:              str,
        fields:              dict,
        expected_status:     Optional[JobStatus] = None,
        expected_updated_at: Optional[datetime]  = None,
    ) -> bool:
        ...
