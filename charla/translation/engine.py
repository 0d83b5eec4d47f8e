# translation/engine.py
import asyncio
import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

from charla.router.models import CompletionOptions, ModelResponse
from charla.router.prompt_builder import (
    build_batch_prompt,
    build_batch_user_prompt,
    build_single_prompt,
    build_structured_prompt,
    build_structured_user_prompt,
)
from charla.router.response_parser import parse_json_object, split_numbered_response
from charla.storage.models import Content, StructuredContent, TextContent
from charla.translation.units import flatten_strings, rebuild_strings
from charla.translation.validation import same_shape, validate_batch

logger = logging.getLogger(__name__)

# Campos traducibles de un resumen estructurado (summary_v2)
SUMMARY_V2_FIELDS = ("title", "intro", "keyPoints", "detailedSections", "decisions", "nextSteps")


class TranslationBackend(Protocol):
    """Lo único que el motor necesita del Router."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt:   str,
        options:       Optional[CompletionOptions] = None,
    ) -> ModelResponse:
        ...


# ------------------------------------------------------------------
# Configuración, estados y resultado
# ------------------------------------------------------------------

@dataclass
class TranslationConfig:
    min_shrink_ratio:        float = 0.2
    shrink_check_min_length: int   = 50
    structured_max_retries:  int   = 2
    max_tokens:              int   = 8000
    batch_max_tokens:        int   = 16000


class BatchState(Enum):
    PREPARED            = "prepared"
    SENT                = "sent"
    PARSED_VALID        = "parsed_valid"
    PARSED_INVALID      = "parsed_invalid"
    FALLBACK_INDIVIDUAL = "fallback_individual"
    ACCEPTED            = "accepted"
    ACCEPTED_PARTIAL    = "accepted_partial"


@dataclass
class BatchResult:
    """
    Resultado de un lote. texts siempre tiene la misma longitud que la
    entrada y cada posición es sustituible por la original.
    """
    texts:          list[str]
    state:          BatchState
    history:        list[BatchState]
    strategy:       Optional[str] = None   # estrategia del parser, si se llegó a parsear
    reason:         Optional[str] = None   # por qué se cayó al modo individual
    failed_indices: list[int]     = field(default_factory=list)


# ------------------------------------------------------------------
# Motor
# ------------------------------------------------------------------

class TranslationBatchEngine:
    """
    Traduce texto plano y documentos estructurados con el mínimo de
    llamadas, validando lo que vuelve y degradando a llamadas por unidad
    cuando el lote no es fiable.

    Máquina de estados de un lote:
        PREPARED → SENT → PARSED_VALID → ACCEPTED
                        → PARSED_INVALID → FALLBACK_INDIVIDUAL → ACCEPTED[_PARTIAL]
    Un error de transporte en la llamada por lotes salta directamente
    a FALLBACK_INDIVIDUAL.
    """

    def __init__(self, backend: TranslationBackend, config: Optional[TranslationConfig] = None):
        self._backend = backend
        self._config  = config or TranslationConfig()

    # ------------------------------------------------------------------
    # Texto
    # ------------------------------------------------------------------

    async def translate_batch(self, units: list[str], target_language: str) -> list[str]:
        """Misma longitud y orden que la entrada. Las unidades vacías vuelven tal cual."""
        result = await self.run_batch(units, target_language)
        return result.texts

    async def run_batch(self, units: list[str], target_language: str) -> BatchResult:
        history = [BatchState.PREPARED]
        items   = [(i, text) for i, text in enumerate(units) if text and text.strip()]

        if not items:
            history.append(BatchState.ACCEPTED)
            return BatchResult(texts=list(units), state=BatchState.ACCEPTED, history=history)

        if len(items) == 1:
            # Una sola unidad: llamada directa, sin marcadores
            history.append(BatchState.SENT)
            return await self._finish_individually(units, items, history, target_language, reason=None)

        originals = [text for _, text in items]
        history.append(BatchState.SENT)
        logger.debug("Traduciendo lote de %d unidades al %s", len(items), target_language)

        try:
            response = await self._backend.complete(
                build_batch_prompt(target_language),
                build_batch_user_prompt(originals, target_language),
                CompletionOptions(max_tokens=self._config.batch_max_tokens),
            )
        except Exception as e:
            logger.error("Error en la traducción por lotes: %s. Se traduce unidad por unidad.", e)
            return await self._finish_individually(
                units, items, history, target_language, reason=f"Error de transporte: {e}",
            )

        parsed     = split_numbered_response(response.text, len(items))
        validation = validate_batch(
            originals,
            parsed.sections,
            min_shrink_ratio        = self._config.min_shrink_ratio,
            shrink_check_min_length = self._config.shrink_check_min_length,
        )

        if not validation.is_valid:
            history.append(BatchState.PARSED_INVALID)
            logger.warning(
                "Lote inválido (%s, parser: %s). Se traduce unidad por unidad.",
                validation.reason, parsed.strategy,
            )
            result = await self._finish_individually(
                units, items, history, target_language, reason=validation.reason,
            )
            result.strategy = parsed.strategy
            return result

        history += [BatchState.PARSED_VALID, BatchState.ACCEPTED]
        texts = list(units)
        for (index, _), translated in zip(items, parsed.sections):
            texts[index] = translated
        return BatchResult(
            texts    = texts,
            state    = BatchState.ACCEPTED,
            history  = history,
            strategy = parsed.strategy,
        )

    async def translate_individually(
        self, units: list[str], target_language: str,
    ) -> tuple[list[str], list[int]]:
        """
        Una llamada por unidad no vacía, en orden. Si una unidad falla se
        conserva su texto original y se sigue con el resto.
        Devuelve los textos y los índices que quedaron sin traducir.
        """
        texts  = list(units)
        failed = []
        system = build_single_prompt(target_language)

        for index, text in enumerate(units):
            if not text or not text.strip():
                continue
            try:
                response = await self._backend.complete(
                    system, text, CompletionOptions(max_tokens=self._config.max_tokens),
                )
            except Exception as e:
                logger.error("Error traduciendo la unidad %d: %s. Se conserva el original.", index, e)
                failed.append(index)
                continue

            if response.text and response.text.strip():
                texts[index] = response.text.strip()
            else:
                logger.warning("Respuesta vacía para la unidad %d, se conserva el original", index)
                failed.append(index)

        return texts, failed

    async def translate_text(self, text: str, target_language: str) -> str:
        if not text or not text.strip():
            return text
        return (await self.translate_batch([text], target_language))[0]

    # ------------------------------------------------------------------
    # Documentos estructurados
    # ------------------------------------------------------------------

    async def translate_structured(self, document: dict, target_language: str) -> dict:
        """
        Traduce el JSON entero en una llamada en modo JSON.
        - respuesta vacía: hasta structured_max_retries reintentos y luego
          se devuelve el original sin tocar
        - JSON con otra forma: se traduce hoja por hoja (translate_document)
        - error de transporte: se devuelve el original sin tocar
        """
        if not flatten_strings(document):
            return copy.deepcopy(document)

        system  = build_structured_prompt(target_language)
        user    = build_structured_user_prompt(document, target_language)
        options = CompletionOptions(json_mode=True, max_tokens=self._config.max_tokens)
        retries = self._config.structured_max_retries

        for attempt in range(retries + 1):
            try:
                response = await self._backend.complete(system, user, options)
            except Exception as e:
                logger.error(
                    "Error en la traducción estructurada: %s. Se conserva el documento original.", e,
                )
                return copy.deepcopy(document)

            if not response.text or not response.text.strip():
                if attempt < retries:
                    logger.warning(
                        "Respuesta vacía en traducción estructurada, reintento %d/%d",
                        attempt + 1, retries,
                    )
                    continue
                logger.error(
                    "Respuesta vacía tras %d reintentos, se conserva el documento original", retries,
                )
                return copy.deepcopy(document)

            parsed = parse_json_object(response.text, response.model_used)
            if parsed is not None and same_shape(document, parsed):
                return parsed

            logger.warning(
                "%s devolvió un JSON con otra forma, se traduce hoja por hoja",
                response.model_used,
            )
            return await self.translate_document(document, target_language)

        return copy.deepcopy(document)

    async def translate_document(
        self,
        document:        dict,
        target_language: str,
        skip_keys:       frozenset[str] = frozenset(),
    ) -> dict:
        """Aplana las hojas de texto, las traduce como lote y reconstruye la misma forma."""
        units = flatten_strings(document, skip_keys)
        if not units:
            return copy.deepcopy(document)
        translated = await self.translate_batch(units, target_language)
        return rebuild_strings(document, translated, skip_keys)

    async def translate_summary(self, summary_v2: dict, target_language: str) -> dict:
        """
        Resumen estructurado: solo se traducen los campos conocidos, en un
        único lote. El resto de claves se copia tal cual.
        """
        view       = {key: summary_v2[key] for key in SUMMARY_V2_FIELDS if key in summary_v2}
        translated = await self.translate_document(view, target_language)
        result     = copy.deepcopy(summary_v2)
        result.update(translated)
        return result

    # ------------------------------------------------------------------
    # Contenido etiquetado
    # ------------------------------------------------------------------

    async def translate_content(self, content: Content, target_language: str) -> Content:
        if isinstance(content, TextContent):
            return TextContent(await self.translate_text(content.text, target_language))
        return StructuredContent(await self.translate_structured(content.data, target_language))

    async def translate_contents(self, contents: list[Content], target_language: str) -> list[Content]:
        """
        Los textos van juntos en un solo lote; los estructurados en
        paralelo, cada uno con su propia llamada. Conserva el orden.
        """
        results: list[Optional[Content]] = [None] * len(contents)

        text_positions = [i for i, c in enumerate(contents) if isinstance(c, TextContent)]
        struct_positions = [i for i, c in enumerate(contents) if isinstance(c, StructuredContent)]

        async def translate_texts() -> None:
            if not text_positions:
                return
            logger.debug("Traduciendo %d contenidos de texto en un lote", len(text_positions))
            translated = await self.translate_batch(
                [contents[i].text for i in text_positions], target_language,
            )
            for position, text in zip(text_positions, translated):
                results[position] = TextContent(text)

        async def translate_one(position: int) -> None:
            data = await self.translate_structured(contents[position].data, target_language)
            results[position] = StructuredContent(data)

        await asyncio.gather(
            translate_texts(),
            *(translate_one(i) for i in struct_positions),
        )
        return results

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _finish_individually(
        self,
        units:           list[str],
        items:           list[tuple[int, str]],
        history:         list[BatchState],
        target_language: str,
        reason:          Optional[str],
    ) -> BatchResult:
        if reason is not None:
            history.append(BatchState.FALLBACK_INDIVIDUAL)
        texts, failed = await self.translate_individually(units, target_language)

        if len(failed) == len(items):
            logger.warning(
                "No se pudo traducir ninguna de las %d unidades, se devuelven los originales",
                len(items),
            )

        state = BatchState.ACCEPTED_PARTIAL if failed else BatchState.ACCEPTED
        history.append(state)
        return BatchResult(
            texts          = texts,
            state          = state,
            history        = history,
            reason         = reason,
            failed_indices = failed,
        )
