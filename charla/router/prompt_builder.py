# router/prompt_builder.py
import json
from typing import Optional


# Separador entre secciones del lote. El parser lo busca en ese orden.
BATCH_SEPARATOR = "\n\n---\n\n"

_FORMAT_RULES = """\
    - Mantén TODO el formato original: markdown, saltos de línea, viñetas, encabezados, tablas y caracteres especiales.
    - Conserva las etiquetas de hablante (p. ej. "Speaker 1:", "Speaker 2:") exactamente como aparecen.
    - Mantén términos técnicos y nombres propios cuando corresponda.
    - Respeta el tono, el estilo y el nivel de formalidad."""

_SINGLE_SYSTEM = """\
    Eres un traductor profesional. Traduce el texto al {target_language}.

    --- INSTRUCCIONES CRÍTICAS ---
{format_rules}
    - NO añadas introducciones, explicaciones ni comentarios.
    - Devuelve ÚNICAMENTE el contenido traducido.
    """

_BATCH_SYSTEM = """\
    Eres un traductor profesional. Traduce cada sección numerada al {target_language}.

    --- INSTRUCCIONES CRÍTICAS ---
    - Traduce cada sección de forma independiente.
    - Formato de salida: [1] texto traducido, [2] texto traducido, etc.
    - Conserva los marcadores [n] tal cual; traduce solo el texto natural.
{format_rules}
    - Usa "---" como separador entre secciones.
    - NO añadas introducciones ni explicaciones.
    """

_STRUCTURED_SYSTEM = """\
    Eres un traductor profesional. Traduce el contenido JSON al {target_language}.

    --- INSTRUCCIONES CRÍTICAS ---
    - Traduce SOLO los valores de texto (strings), NUNCA las claves ni la estructura.
    - Mantén exactamente la misma estructura JSON.
    - Conserva todos los valores que no son texto (números, booleanos, null, forma de los arrays).
    - Mantén términos técnicos cuando corresponda.
    - Devuelve solo JSON válido.
    """

_SUMMARY_SYSTEM = """\
    Eres un asistente que resume conversaciones transcritas.
    Escribe un resumen claro y fiel en el mismo idioma de la transcripción.

    --- REGLAS ---
    - Empieza con una frase que diga de qué trata la conversación.
    - Después, los puntos clave, decisiones y próximos pasos si los hay.
    - No inventes información que no esté en la transcripción.
    - Devuelve solo el resumen, sin títulos ni comentarios sobre la tarea.
{context_block}"""

_TRANSCRIPTION_INSTRUCTIONS = """\
    Transcribe este audio de forma literal, en su idioma original.
    Separa los turnos de palabra con etiquetas "Speaker 1:", "Speaker 2:", etc.
    No resumas ni corrijas lo que se dice.
{context_block}
    Devuelve EXACTAMENTE 1 objeto JSON válido con esta forma:
    {{"language": "código ISO 639-1 del idioma hablado", "transcript": "transcripción completa"}}
    """


def build_single_prompt(target_language: str) -> str:
    """System prompt para traducir una sola unidad. El texto va como mensaje de usuario."""
    return _dedent(_SINGLE_SYSTEM.format(
        target_language = target_language,
        format_rules    = _FORMAT_RULES,
    ))


def build_batch_prompt(target_language: str) -> str:
    return _dedent(_BATCH_SYSTEM.format(
        target_language = target_language,
        format_rules    = _FORMAT_RULES,
    ))


def build_batch_user_prompt(units: list[str], target_language: str) -> str:
    """
    Numera las unidades con marcadores [n] (base 1) y las une con el separador.
    El parser se apoya en ambos para recuperar el orden.
    """
    numbered = BATCH_SEPARATOR.join(
        f"[{i}]\n{text}" for i, text in enumerate(units, start=1)
    )
    return f"Traduce estas {len(units)} secciones al {target_language}:\n\n{numbered}"


def build_structured_prompt(target_language: str) -> str:
    return _dedent(_STRUCTURED_SYSTEM.format(target_language=target_language))


def build_structured_user_prompt(document: dict, target_language: str) -> str:
    return (
        f"Traduce este JSON al {target_language}:\n\n"
        f"{json.dumps(document, ensure_ascii=False, indent=2)}"
    )


def build_summary_prompt(context: Optional[str] = None) -> str:
    return _dedent(_SUMMARY_SYSTEM.format(context_block=_format_context(context)))


def build_transcription_prompt(context: Optional[str] = None) -> str:
    return _dedent(_TRANSCRIPTION_INSTRUCTIONS.format(context_block=_format_context(context)))


def _format_context(context: Optional[str]) -> str:
    if not context or not context.strip():
        return ""
    return f"\n    --- CONTEXTO DEL USUARIO ---\n    {context.strip()}\n"


def _dedent(text: str) -> str:
    # Los templates llevan sangría de 4 espacios para legibilidad
    return "\n".join(
        line[4:] if line.startswith("    ") else line
        for line in text.splitlines()
    ).strip() + "\n"
