# tests/translation/test_units.py
import pytest

from charla.translation.units import flatten_strings, rebuild_strings

DOCUMENT = {
    "title": "Reunión",
    "score": 4.5,
    "done":  False,
    "notes": None,
    "items": [
        {"text": "Primero", "votes": 3},
        {"text": "Segundo", "tags": ["a", "b"]},
    ],
}


class TestFlattenStrings:

    def test_orden_de_recorrido(self):
        assert flatten_strings(DOCUMENT) == ["Reunión", "Primero", "Segundo", "a", "b"]

    def test_skip_keys_excluye_subarbol(self):
        assert flatten_strings(DOCUMENT, frozenset({"items"})) == ["Reunión"]

    def test_sin_textos(self):
        assert flatten_strings({"n": 1, "l": [1, 2]}) == []


class TestRebuildStrings:

    def test_sustituye_solo_hojas_de_texto(self):
        translated = [f"T{i}" for i in range(5)]
        rebuilt = rebuild_strings(DOCUMENT, translated)

        assert rebuilt == {
            "title": "T0",
            "score": 4.5,
            "done":  False,
            "notes": None,
            "items": [
                {"text": "T1", "votes": 3},
                {"text": "T2", "tags": ["T3", "T4"]},
            ],
        }

    def test_no_modifica_el_original(self):
        rebuild_strings(DOCUMENT, ["x"] * 5)
        assert DOCUMENT["title"] == "Reunión"

    def test_skip_keys_se_copian_tal_cual(self):
        rebuilt = rebuild_strings(DOCUMENT, ["Meeting"], frozenset({"items"}))
        assert rebuilt["title"] == "Meeting"
        assert rebuilt["items"] == DOCUMENT["items"]

    @pytest.mark.parametrize("count", [4, 6])
    def test_numero_distinto_lanza_error(self, count):
        with pytest.raises(ValueError):
            rebuild_strings(DOCUMENT, ["x"] * count)
