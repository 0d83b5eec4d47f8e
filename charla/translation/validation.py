# translation/validation.py
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Textos que pueden quedar idénticos sin que sea sospechoso (códigos, nombres)
_CODE_LIKE_RE = re.compile(r"^[A-Z0-9\s\-_.@]+$", re.IGNORECASE)


@dataclass
class BatchValidation:
    is_valid: bool
    reason:   Optional[str] = None


def validate_batch(
    originals:               list[str],
    translations:            list[str],
    min_shrink_ratio:        float = 0.2,
    shrink_check_min_length: int   = 50,
) -> BatchValidation:
    """
    Decide si el resultado de un lote es aceptable. Cualquier violación
    invalida el lote entero:
    - el número de secciones no coincide
    - una unidad no vacía queda vacía
    - una unidad de más de shrink_check_min_length caracteres se encoge
      por debajo de min_shrink_ratio (truncado silencioso)
    """
    if len(translations) != len(originals):
        return BatchValidation(
            False,
            f"Número de secciones distinto: esperadas {len(originals)}, recibidas {len(translations)}",
        )

    for i, (original, translated) in enumerate(zip(originals, translations), start=1):
        if original.strip() and not (translated or "").strip():
            return BatchValidation(
                False, f"Traducción vacía en la sección {i} (original: {original[:50]!r})"
            )

        if (
            len(original) > shrink_check_min_length
            and len(translated) < len(original) * min_shrink_ratio
        ):
            return BatchValidation(
                False,
                f"Traducción sospechosamente corta en la sección {i}: "
                f"{len(translated)} caracteres frente a {len(original)}",
            )

        if len(original) > 20 and translated == original and not _CODE_LIKE_RE.match(original):
            logger.debug("Sección %d idéntica al original, posible fallo de parseo", i)

    return BatchValidation(True)


def same_shape(source: Any, candidate: Any) -> bool:
    """
    True si candidate tiene exactamente la forma de source: mismas claves,
    mismas longitudes de arrays, texto donde había texto y los mismos
    valores no textuales.
    """
    if isinstance(source, str):
        return isinstance(candidate, str)
    if isinstance(source, dict):
        return (
            isinstance(candidate, dict)
            and set(source) == set(candidate)
            and all(same_shape(source[k], candidate[k]) for k in source)
        )
    if isinstance(source, list):
        return (
            isinstance(candidate, list)
            and len(source) == len(candidate)
            and all(same_shape(s, c) for s, c in zip(source, candidate))
        )
    return type(source) is type(candidate) and source == candidate
