# charla/config_loader.py
import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from charla.recovery.reconciler import RecoveryConfig
from charla.router.models import ModelConfig
from charla.translation.engine import TranslationConfig

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG_PATH = Path.home() / ".charla" / "config.yaml"


@dataclass
class WorkerSettings:
    concurrency:              int   = 1
    poll_interval_seconds:    float = 1.0
    lock_seconds:             float = 30.0
    stalled_interval_seconds: float = 30.0
    max_stalled_count:        int   = 1


@dataclass
class TranscriptionSettings:
    model_id: Optional[str] = None   # None → modelo por defecto del transcriptor
    api_key:  Optional[str] = None   # None → se usa la del modelo "gemini"


@dataclass
class Settings:
    models:        list[ModelConfig]     = field(default_factory=list)
    recovery:      RecoveryConfig        = field(default_factory=RecoveryConfig)
    translation:   TranslationConfig     = field(default_factory=TranslationConfig)
    worker:        WorkerSettings        = field(default_factory=WorkerSettings)
    transcription: TranscriptionSettings = field(default_factory=TranscriptionSettings)


def load_settings(config_path: Optional[str] = None, required: bool = True) -> Settings:
    """
    Carga ~/.charla/config.yaml (o CHARLA_CONFIG_PATH, o config_path).
    Las secciones que faltan toman los valores por defecto.
    Con required=False un archivo inexistente devuelve Settings() vacío.
    """
    path = _resolve_path(config_path)

    if not path.exists():
        if not required:
            logger.debug("Sin config en %s, se usan valores por defecto", path)
            return Settings()
        raise FileNotFoundError(
            f"Config no encontrada en {path}. "
            f"Copia config.example.yaml a ~/.charla/config.yaml"
        )

    with path.open(encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Config inválida en {path}: se esperaba un mapa YAML")

    transcription = _section(raw, "transcription", TranscriptionSettings)
    transcription.api_key = _resolve_env(transcription.api_key)

    return Settings(
        models        = _parse_models(raw),
        recovery      = _section(raw, "recovery", RecoveryConfig),
        translation   = _section(raw, "translation", TranslationConfig),
        worker        = _section(raw, "worker", WorkerSettings),
        transcription = transcription,
    )


def load_model_configs(config_path: Optional[str] = None) -> list[ModelConfig]:
    """Atajo: solo la lista de modelos, ordenada por prioridad ascendente."""
    return load_settings(config_path).models


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _resolve_path(config_path: Optional[str]) -> Path:
    return Path(config_path or os.environ.get("CHARLA_CONFIG_PATH") or _DEFAULT_CONFIG_PATH).expanduser()


def _parse_models(raw: dict) -> list[ModelConfig]:
    configs = []
    for entry in raw.get("models") or []:
        configs.append(ModelConfig(
            name              = entry["name"],
            priority          = entry.get("priority", 99),
            daily_token_limit = entry.get("daily_token_limit", 80_000),
            api_key           = _resolve_env(entry.get("api_key")),
            timeout_seconds   = entry.get("timeout_seconds", 60),
            temperature       = entry.get("temperature", 0.3),
            model_id          = entry.get("model_id"),
        ))
    return sorted(configs, key=lambda c: c.priority)


def _section(raw: dict, name: str, cls):
    """Construye el dataclass de una sección ignorando (con aviso) las claves desconocidas."""
    values = raw.get(name) or {}
    if not isinstance(values, dict):
        raise ValueError(f"La sección '{name}' del config debe ser un mapa")

    known   = {f.name for f in dataclasses.fields(cls)}
    unknown = set(values) - known
    if unknown:
        logger.warning("Claves desconocidas en '%s': %s", name, ", ".join(sorted(unknown)))

    return cls(**{k: v for k, v in values.items() if k in known})


def _resolve_env(value: Optional[str]) -> Optional[str]:
    """Expande ${VAR_NAME} desde el entorno."""
    if not value or not value.startswith("${"):
        return value
    var_name = value.strip("${}").strip()
    return os.environ.get(var_name)
