# router/response_parser.py
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# Captura JSON dentro de bloques ```json ... ``` o ``` ... ```
_MARKDOWN_JSON_RE = re.compile(
    r"```(?:json)?\s*(\{.*?\})\s*```",
    re.DOTALL,
)

# Captura el primer objeto JSON que aparezca en el texto
_BARE_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)

# Línea formada solo por guiones (3 o más): separador entre secciones
_DELIMITER_RE = re.compile(r"\n[ \t]*-{3,}[ \t]*\n")

# Marcador [n] al inicio de línea
_MARKER_RE = re.compile(r"^[ \t]*\[(\d+)\][ \t]*", re.MULTILINE)

# Marcador [n] sobrante al principio de una sección
_LEADING_MARKER_RE = re.compile(r"^\s*\[\d+\]\s*")

_TRAILING_DELIMITER_RE = re.compile(r"\n?[ \t]*-{3,}[ \t]*$")

_PARAGRAPH_RE = re.compile(r"\n\s*\n")


@dataclass
class ParsedBatch:
    sections: list[str]
    strategy: str       # "delimiter" | "marker" | "paragraph" | "empty"


def split_numbered_response(raw_text: str, expected_count: int) -> ParsedBatch:
    """
    Recupera las secciones de una respuesta por lotes con degradación progresiva.

    Estrategia:
    1. Separador "---" (el camino feliz). Solo vale si da exactamente
       expected_count secciones.
    2. Marcadores [1]..[N] en orden, al inicio de línea.
    3. Párrafos separados por línea en blanco, sin rellenar.

    Nunca lanza excepción. Si ninguna estrategia cuadra, el número de
    secciones no coincide y la validación del lote lo detecta.
    """
    text = (raw_text or "").strip()
    if not text:
        return ParsedBatch(sections=[], strategy="empty")

    # Intento 1: separador
    sections = _split_by_delimiter(text)
    if len(sections) == expected_count:
        return ParsedBatch(sections=sections, strategy="delimiter")

    # Intento 2: marcadores numerados
    sections = _split_by_markers(text, expected_count)
    if sections is not None:
        logger.debug("Respuesta por lotes recuperada por marcadores [n]")
        return ParsedBatch(sections=sections, strategy="marker")

    # Intento 3: párrafos
    sections = [_clean_section(p) for p in _PARAGRAPH_RE.split(text)]
    sections = [s for s in sections if s]
    logger.warning(
        "Respuesta por lotes sin estructura reconocible: %d párrafos para %d secciones",
        len(sections), expected_count,
    )
    return ParsedBatch(sections=sections, strategy="paragraph")


def parse_json_object(raw_text: str, model_name: str = "modelo") -> Optional[dict]:
    """
    Extrae un objeto JSON de la respuesta del modelo.

    1. JSON directo
    2. JSON dentro de bloque markdown
    3. Primer objeto JSON en el texto libre

    Devuelve None si nada parsea como objeto.
    """
    text = (raw_text or "").strip()
    if not text:
        return None

    result = _try_parse(text)
    if result is not None:
        return result

    match = _MARKDOWN_JSON_RE.search(text)
    if match:
        result = _try_parse(match.group(1))
        if result is not None:
            logger.warning(
                "%s envolvió el JSON en markdown, considera reforzar el prompt",
                model_name,
            )
            return result

    match = _BARE_JSON_RE.search(text)
    if match:
        result = _try_parse(match.group(0))
        if result is not None:
            logger.warning("%s devolvió JSON con texto extra alrededor", model_name)
            return result

    logger.error("%s devolvió una respuesta que no es JSON", model_name)
    return None


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _split_by_delimiter(text: str) -> list[str]:
    sections = [_clean_section(s) for s in _DELIMITER_RE.split(text)]
    return [s for s in sections if s]


def _split_by_markers(text: str, expected_count: int) -> Optional[list[str]]:
    """
    Busca [1], [2], ... [N] en orden. Un [k] fuera de secuencia se
    considera parte del texto. None si falta algún marcador.
    """
    positions: list[tuple[int, int]] = []   # (inicio del marcador, inicio del texto)
    wanted = 1
    for match in _MARKER_RE.finditer(text):
        if wanted > expected_count:
            break
        if int(match.group(1)) == wanted:
            positions.append((match.start(), match.end()))
            wanted += 1

    if len(positions) != expected_count:
        return None

    sections = []
    for i, (_, body_start) in enumerate(positions):
        body_end = positions[i + 1][0] if i + 1 < len(positions) else len(text)
        sections.append(_clean_section(text[body_start:body_end]))
    return sections


def _clean_section(section: str) -> str:
    section = _TRAILING_DELIMITER_RE.sub("", section.strip())
    return _LEADING_MARKER_RE.sub("", section).strip()


def _try_parse(text: str) -> Optional[dict]:
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except (json.JSONDecodeError, ValueError):
        pass
    return None
