# router/claude.py
import logging
from typing import TYPE_CHECKING, Optional

import anthropic

from charla.router.base import BaseModel
from charla.router.models import CompletionOptions, ModelConfig, ModelResponse

if TYPE_CHECKING:
    from charla.storage.repository import Repository

logger = logging.getLogger(__name__)

_DEFAULT_MODEL_ID = "claude-haiku-4-5-20251001"

# Errores que activan failover hacia otro modelo
_RETRYABLE_ERRORS = (
    anthropic.RateLimitError,
    anthropic.APITimeoutError,
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
)


class ClaudeAdapter(BaseModel):

    def __init__(self, config: ModelConfig, repo: "Repository"):
        super().__init__(config, repo)
        self._client = anthropic.AsyncAnthropic(
            api_key = config.api_key,
            timeout = config.timeout_seconds,
        )

    async def complete(
        self,
        system_prompt: str,
        user_prompt:   str,
        options:       Optional[CompletionOptions] = None,
    ) -> ModelResponse:
        options = options or CompletionOptions()
        system  = system_prompt
        if options.json_mode:
            # Claude no tiene modo JSON nativo: se refuerza en el system prompt
            system += "\n\nResponde únicamente con un objeto JSON válido."

        try:
            response = await self._client.messages.create(
                model       = self._config.model_id or _DEFAULT_MODEL_ID,
                max_tokens  = options.max_tokens,
                temperature = self._config.temperature,
                system      = system,
                messages    = [{"role": "user", "content": user_prompt}],
            )
        except _RETRYABLE_ERRORS as e:
            logger.warning("Claude error retryable: %s", e)
            self._start_cooldown()
            raise   # El Router captura esto y hace failover

        except anthropic.BadRequestError as e:
            # Error de contenido, no de disponibilidad
            logger.error("Claude BadRequest: %s", e)
            raise

        text          = "".join(block.text for block in response.content if block.type == "text")
        tokens_input  = response.usage.input_tokens
        tokens_output = response.usage.output_tokens

        await self._repo.add_token_usage(self.name, tokens_input + tokens_output)

        return ModelResponse(
            text          = text,
            model_used    = self.name,
            tokens_input  = tokens_input,
            tokens_output = tokens_output,
        )
