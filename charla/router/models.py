# router/models.py
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ModelResponse:
    text:          str
    model_used:    str
    tokens_input:  int
    tokens_output: int


@dataclass
class CompletionOptions:
    """Opciones por llamada. json_mode pide al modelo una respuesta JSON nativa."""
    json_mode:  bool = False
    max_tokens: int  = 8000


@dataclass
class ModelConfig:
    """
    Configuración de un modelo individual.
    Se carga desde ~/.charla/config.yaml.
    """
    name:              str
    priority:          int
    daily_token_limit: int
    api_key:           Optional[str] = None
    timeout_seconds:   int           = 60
    temperature:       float         = 0.3
    model_id:          Optional[str] = None   # None → modelo por defecto del adaptador

    # Control de cooldown temporal (no viene del YAML, es runtime)
    _unavailable_until: Optional[float] = field(
        default=None, compare=False, repr=False
    )
