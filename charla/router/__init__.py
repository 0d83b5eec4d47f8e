from charla.router.router import Router, AllModelsExhaustedError
from charla.router.base import BaseModel
from charla.router.models import CompletionOptions, ModelConfig, ModelResponse

__all__ = [
    "Router",
    "AllModelsExhaustedError",
    "BaseModel",
    "CompletionOptions",
    "ModelConfig",
    "ModelResponse",
]
