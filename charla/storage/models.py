# storage/models.py
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class JobStatus(Enum):
    PENDING    = "pending"
    PROCESSING = "processing"
    COMPLETED  = "completed"
    FAILED     = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class SourceType(Enum):
    SUMMARY  = "summary"
    ANALYSIS = "analysis"


class _DeleteField:
    """
    Marcador para borrar un campo en update_job.
    Distinto de "" (string vacío) y de None (rechazado explícitamente).
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


# ------------------------------------------------------------------
# Contenido: variante etiquetada texto / estructurado
# ------------------------------------------------------------------

@dataclass(frozen=True)
class TextContent:
    text: str
    kind = "text"


@dataclass(frozen=True)
class StructuredContent:
    data: dict
    kind = "structured"


Content = Union[TextContent, StructuredContent]


def content_to_dict(content: Content) -> dict:
    if isinstance(content, TextContent):
        return {"type": "text", "text": content.text}
    return {"type": "structured", "data": content.data}


def content_from_dict(raw) -> Content:
    """
    Valida el contenido en la frontera (lo que viene de la DB o de un caller).
    Lanza ValueError si no encaja en ninguna de las dos variantes.
    """
    if not isinstance(raw, dict):
        raise ValueError(f"Contenido inválido: se esperaba un objeto, llegó {type(raw).__name__}")

    kind = raw.get("type")
    if kind == "text" and isinstance(raw.get("text"), str):
        return TextContent(text=raw["text"])
    if kind == "structured" and isinstance(raw.get("data"), dict):
        return StructuredContent(data=raw["data"])

    raise ValueError(f"Contenido inválido: tipo '{kind}' o cuerpo mal formado")


# ------------------------------------------------------------------
# Registros persistidos
# ------------------------------------------------------------------

@dataclass
class StoredJob:
    id:                 str
    user_id:            str
    status:             JobStatus
    file_url:           str
    created_at:         datetime
    updated_at:         datetime
    context:            Optional[str]  = None
    selected_templates: list[str]      = field(default_factory=list)
    error:              Optional[str]  = None
    transcript_text:    Optional[str]  = None
    summary:            Optional[str]  = None
    summary_v2:         Optional[dict] = None
    detected_language:  Optional[str]  = None
    preferred_locale:   Optional[str]  = None
    completed_at:       Optional[datetime] = None


@dataclass
class StoredAnalysis:
    id:               str
    transcription_id: str
    user_id:          str
    template_name:    str
    content:          Content
    created_at:       datetime


@dataclass
class StoredTranslation:
    source_type:      SourceType
    source_id:        str
    transcription_id: str
    user_id:          str
    locale_code:      str
    locale_name:      str
    content:          Content
    translated_at:    datetime
    translated_by:    str
    created_at:       datetime
    updated_at:       datetime
    id:               Optional[str] = None

    @property
    def key(self) -> tuple:
        """Clave de idempotencia: una traducción por (fuente, locale, usuario)."""
        return (
            self.transcription_id,
            self.source_type,
            self.source_id,
            self.locale_code,
            self.user_id,
        )
