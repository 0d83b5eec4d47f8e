# translation/units.py
"""
Aplanado de documentos estructurados en unidades de traducción.

La identidad de una unidad es su posición en la lista aplanada: el
recorrido es determinista (orden de inserción de claves, orden de los
arrays), así que rebuild_strings coloca cada traducción en la misma
hoja de la que salió. Solo cambian las hojas de texto; claves, números,
booleanos, null y longitudes de arrays se conservan.
"""
from typing import Any


_EXHAUSTED = object()


def flatten_strings(document: Any, skip_keys: frozenset[str] = frozenset()) -> list[str]:
    """Devuelve las hojas de texto del documento en orden de recorrido."""
    units: list[str] = []

    def walk(node: Any) -> None:
        if isinstance(node, str):
            units.append(node)
        elif isinstance(node, dict):
            for key, value in node.items():
                if key not in skip_keys:
                    walk(value)
        elif isinstance(node, list):
            for item in node:
                walk(item)

    walk(document)
    return units


def rebuild_strings(
    document:   Any,
    translated: list[str],
    skip_keys:  frozenset[str] = frozenset(),
) -> Any:
    """
    Copia el documento sustituyendo cada hoja de texto por la traducción
    de la misma posición. ValueError si el número de traducciones no
    coincide con el de hojas.
    """
    remaining = iter(translated)

    def walk(node: Any) -> Any:
        if isinstance(node, str):
            value = next(remaining, _EXHAUSTED)
            if value is _EXHAUSTED:
                raise ValueError("Faltan traducciones para reconstruir el documento")
            return value
        if isinstance(node, dict):
            return {
                key: (value if key in skip_keys else walk(value))
                for key, value in node.items()
            }
        if isinstance(node, list):
            return [walk(item) for item in node]
        return node

    rebuilt = walk(document)
    if next(remaining, _EXHAUSTED) is not _EXHAUSTED:
        raise ValueError("Sobran traducciones para reconstruir el documento")
    return rebuilt
