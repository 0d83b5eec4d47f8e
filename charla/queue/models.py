# queue/models.py
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


TRANSCRIBE_TASK = "transcribe"


class TaskState(Enum):
    WAITING   = "waiting"
    DELAYED   = "delayed"
    ACTIVE    = "active"
    COMPLETED = "completed"
    FAILED    = "failed"


class InvalidPayloadError(ValueError):
    """El payload de una tarea no pasa la validación de frontera."""
    pass


class StalledLimitError(Exception):
    """La tarea se quedó colgada más veces de las permitidas."""
    pass


@dataclass
class Backoff:
    type:          str   = "exponential"   # "exponential" | "fixed"
    delay_seconds: float = 60.0

    def delay_for(self, attempts_made: int) -> float:
        """Espera antes del siguiente intento, con attempts_made ya incrementado."""
        if self.type == "fixed":
            return self.delay_seconds
        return self.delay_seconds * (2 ** max(0, attempts_made - 1))


@dataclass
class RetryPolicy:
    attempts: int     = 3
    backoff:  Backoff = field(default_factory=Backoff)


@dataclass
class QueueTask:
    id:            str
    task_type:     str
    payload:       dict
    state:         TaskState
    attempts_made: int
    max_attempts:  int
    backoff:       Backoff
    run_at:        datetime
    created_at:    datetime
    updated_at:    datetime
    locked_until:  Optional[datetime] = None
    worker_id:     Optional[str]      = None
    stalled_count: int                = 0
    failed_reason: Optional[str]      = None

    @property
    def job_id(self) -> Optional[str]:
        """Clave foránea hacia el Job. None si el payload no la trae."""
        value = self.payload.get("job_id") if isinstance(self.payload, dict) else None
        return value if isinstance(value, str) else None

    @property
    def is_final_attempt(self) -> bool:
        """True si un fallo en la ejecución actual agota los reintentos."""
        return self.attempts_made + 1 >= self.max_attempts


@dataclass
class TranscriptionPayload:
    """Datos opacos que viajan con la tarea y se reenvían tal cual al recuperar."""
    job_id:             str
    user_id:            str
    file_url:           str
    context:            Optional[str] = None
    selected_templates: list[str]     = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "job_id":             self.job_id,
            "user_id":            self.user_id,
            "file_url":           self.file_url,
            "context":            self.context,
            "selected_templates": list(self.selected_templates),
        }

    @classmethod
    def from_dict(cls, raw) -> "TranscriptionPayload":
        if not isinstance(raw, dict):
            raise InvalidPayloadError("El payload debe ser un objeto")

        for key in ("job_id", "user_id", "file_url"):
            value = raw.get(key)
            if not isinstance(value, str) or not value:
                raise InvalidPayloadError(f"Payload sin '{key}' válido")

        context = raw.get("context")
        if context is not None and not isinstance(context, str):
            raise InvalidPayloadError("'context' debe ser texto")

        templates = raw.get("selected_templates") or []
        if not isinstance(templates, list) or not all(isinstance(t, str) for t in templates):
            raise InvalidPayloadError("'selected_templates' debe ser una lista de textos")

        return cls(
            job_id             = raw["job_id"],
            user_id            = raw["user_id"],
            file_url           = raw["file_url"],
            context            = context,
            selected_templates = templates,
        )
