# router/base.py
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

from charla.router.models import CompletionOptions, ModelConfig, ModelResponse

if TYPE_CHECKING:
    from charla.storage.repository import Repository

# Segundos que un modelo queda fuera tras un error de disponibilidad
COOLDOWN_SECONDS = 300


class BaseModel(ABC):
    """
    Contrato que deben cumplir todos los adaptadores.
    El motor de traducción y el Router solo hablan con esta interfaz.
    Nunca importan claude.py ni gemini.py directamente.
    """

    def __init__(self, config: ModelConfig, repo: "Repository"):
        self._config = config
        self._repo   = repo

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt:   str,
        options:       Optional[CompletionOptions] = None,
    ) -> ModelResponse:
        """
        Una llamada de chat opaca: texto (o texto JSON) de entrada y salida.
        SÍ puede lanzar errores de red, rate limit o de contenido.
        El Router decide cuáles hacen failover.
        """
        ...

    @property
    def name(self) -> str:
        """Identificador del modelo. Debe coincidir con quota_usage.model."""
        return self._config.name

    async def is_available(self) -> bool:
        """
        Consulta cooldown y quota del día antes de hacer cualquier
        llamada de red. Si superó el límite → False sin latencia.
        """
        if self._config._unavailable_until is not None:
            if time.time() < self._config._unavailable_until:
                return False
            self._config._unavailable_until = None  # cooldown expirado

        used = await self._repo.get_token_usage_today(self.name)
        return used < self._config.daily_token_limit

    def _start_cooldown(self) -> None:
        self._config._unavailable_until = time.time() + COOLDOWN_SECONDS
