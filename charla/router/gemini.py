# router/gemini.py
import logging
from typing import TYPE_CHECKING, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from charla.router.base import BaseModel
from charla.router.models import CompletionOptions, ModelConfig, ModelResponse

if TYPE_CHECKING:
    from charla.storage.repository import Repository

logger = logging.getLogger(__name__)

_DEFAULT_MODEL_ID = "gemini-2.0-flash"


def is_retryable_gemini_error(e: Exception) -> bool:
    """5xx y 429 son de disponibilidad; el resto de 4xx son de contenido."""
    if isinstance(e, genai_errors.ServerError):
        return True
    return isinstance(e, genai_errors.ClientError) and e.code == 429


class GeminiAdapter(BaseModel):

    def __init__(self, config: ModelConfig, repo: "Repository"):
        super().__init__(config, repo)
        self._client = genai.Client(
            api_key      = config.api_key,
            http_options = types.HttpOptions(timeout=config.timeout_seconds * 1000),
        )

    async def complete(
        self,
        system_prompt: str,
        user_prompt:   str,
        options:       Optional[CompletionOptions] = None,
    ) -> ModelResponse:
        options = options or CompletionOptions()
        config  = types.GenerateContentConfig(
            system_instruction = system_prompt,
            temperature        = self._config.temperature,
            max_output_tokens  = options.max_tokens,
            response_mime_type = "application/json" if options.json_mode else None,
        )

        try:
            response = await self._client.aio.models.generate_content(
                model    = self._config.model_id or _DEFAULT_MODEL_ID,
                contents = user_prompt,
                config   = config,
            )
        except genai_errors.APIError as e:
            if is_retryable_gemini_error(e):
                logger.warning("Gemini error retryable: %s", e)
                self._start_cooldown()
            else:
                logger.error("Gemini error de contenido: %s", e)
            raise

        # Gemini devuelve tokens en usage_metadata
        usage         = response.usage_metadata
        tokens_input  = (usage.prompt_token_count or 0) if usage else 0
        tokens_output = (usage.candidates_token_count or 0) if usage else 0

        await self._repo.add_token_usage(self.name, tokens_input + tokens_output)

        return ModelResponse(
            text          = response.text or "",
            model_used    = self.name,
            tokens_input  = tokens_input,
            tokens_output = tokens_output,
        )
