# router/router.py
import logging
from typing import Optional

import anthropic
from google.genai import errors as genai_errors

from charla.router.base import BaseModel
from charla.router.gemini import is_retryable_gemini_error
from charla.router.models import CompletionOptions, ModelResponse

logger = logging.getLogger(__name__)


class AllModelsExhaustedError(Exception):
    """Se lanza cuando ningún modelo está disponible o todos fallaron."""
    pass


class Router:
    """
    Decide qué modelo usar en cada llamada.
    El motor de traducción llama a Router.complete(), nunca a un adaptador.

    Responsabilidades:
    - Seleccionar el modelo disponible de mayor prioridad
    - Hacer failover si el modelo falla por error de red o rate limit
    - Propagar errores de contenido (no son de disponibilidad)
    """

    def __init__(self, models: list[BaseModel]):
        # La lista ya viene ordenada por prioridad desde el config
        if not models:
            raise ValueError("El Router necesita al menos un modelo")
        self._models = models

    async def complete(
        self,
        system_prompt: str,
        user_prompt:   str,
        options:       Optional[CompletionOptions] = None,
    ) -> ModelResponse:
        """
        Intenta la llamada con el mejor modelo disponible.
        Si falla por rate limit o red, hace failover automático.
        Lanza AllModelsExhaustedError si ninguno responde.
        """
        last_error: Exception | None = None

        for model in self._models:
            if not await model.is_available():
                logger.info("Modelo %s no disponible (quota o cooldown), saltando", model.name)
                continue

            try:
                logger.debug("Intentando llamada con %s", model.name)
                response = await model.complete(system_prompt, user_prompt, options)
                logger.debug(
                    "Respuesta de %s | tokens: %d+%d",
                    model.name, response.tokens_input, response.tokens_output,
                )
                return response

            except Exception as e:
                if _is_content_error(e):
                    logger.error(
                        "Error de contenido en %s, no se hace failover: %s",
                        model.name, e,
                    )
                    raise

                logger.warning(
                    "Modelo %s falló con error retryable: %s. Pasando al siguiente.",
                    model.name, e,
                )
                last_error = e
                continue

        raise AllModelsExhaustedError(
            f"Ningún modelo disponible. Último error: {last_error}"
        )

    async def available_models(self) -> list[str]:
        """Útil para logging y para el CLI."""
        return [m.name for m in self._models if await m.is_available()]


def _is_content_error(e: Exception) -> bool:
    """
    Determina si el error es del contenido de la petición (no de disponibilidad).
    Estos errores no activan failover: darían lo mismo en cualquier modelo.
    """
    if isinstance(e, (anthropic.BadRequestError, ValueError)):
        return True
    if isinstance(e, genai_errors.ClientError):
        return not is_retryable_gemini_error(e)
    return False
