# transcription/gemini_transcriber.py
import logging
import mimetypes
from pathlib import Path
from typing import Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from charla.router.prompt_builder import build_transcription_prompt
from charla.router.response_parser import parse_json_object
from charla.transcription.base import Transcriber, TranscriptResult

logger = logging.getLogger(__name__)

_DEFAULT_MODEL_ID = "gemini-2.0-flash"


class GeminiTranscriber(Transcriber):
    """
    Transcribe con Gemini. Los archivos locales se suben con la Files API
    y se borran al terminar; las URIs remotas (gs://, https://) se pasan
    directamente al modelo.
    """

    def __init__(self, api_key: Optional[str], model_id: Optional[str] = None, timeout_seconds: int = 600):
        self._model_id = model_id or _DEFAULT_MODEL_ID
        self._client   = genai.Client(
            api_key      = api_key,
            http_options = types.HttpOptions(timeout=timeout_seconds * 1000),
        )

    async def transcribe(self, file_url: str, context: Optional[str] = None) -> TranscriptResult:
        uploaded = None
        if _is_remote(file_url):
            mime_type = mimetypes.guess_type(file_url)[0] or "audio/mpeg"
            audio     = types.Part.from_uri(file_uri=file_url, mime_type=mime_type)
        else:
            path = Path(file_url).expanduser()
            if not path.exists():
                raise FileNotFoundError(f"Audio no encontrado: {path}")
            logger.debug("Subiendo %s a Gemini", path)
            uploaded = await self._client.aio.files.upload(file=str(path))
            audio    = uploaded

        try:
            response = await self._client.aio.models.generate_content(
                model    = self._model_id,
                contents = [build_transcription_prompt(context), audio],
                config   = types.GenerateContentConfig(
                    temperature        = 0.0,
                    response_mime_type = "application/json",
                ),
            )
        finally:
            if uploaded is not None:
                await self._delete_uploaded(uploaded.name)

        raw  = response.text or ""
        data = parse_json_object(raw, "gemini")
        if data is None:
            logger.warning("Gemini no devolvió JSON en la transcripción, se usa el texto tal cual")
            return TranscriptResult(text=raw.strip())

        transcript = str(data.get("transcript") or data.get("text") or "").strip()
        language   = data.get("language")
        return TranscriptResult(
            text     = transcript,
            language = language if isinstance(language, str) and language else None,
        )

    async def _delete_uploaded(self, name: Optional[str]) -> None:
        if not name:
            return
        try:
            await self._client.aio.files.delete(name=name)
        except genai_errors.APIError as e:
            # El archivo caduca solo en Gemini; no se falla la transcripción por esto
            logger.warning("No se pudo borrar el archivo subido %s: %s", name, e)


def _is_remote(file_url: str) -> bool:
    return file_url.startswith(("gs://", "http://", "https://"))
