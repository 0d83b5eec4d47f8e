# tests/conftest.py
import json

import pytest

from charla.queue.sqlite_queue import SqliteWorkQueue
from charla.router.models import ModelResponse
from charla.router.prompt_builder import BATCH_SEPARATOR
from charla.storage.repository import Repository


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def repo():
    """Cada test tiene su propia DB en memoria, aislada y sin cleanup."""
    r = Repository(db_path=":memory:")
    yield r
    r.close()


@pytest.fixture
def queue():
    q = SqliteWorkQueue(db_path=":memory:")
    yield q
    q.close()


# ------------------------------------------------------------------
# Backend de traducción guionizado
# ------------------------------------------------------------------

def translate_like_a_model(system_prompt: str, user_prompt: str, options) -> str:
    """
    Respuesta "perfecta" de un modelo: antepone ES: a cada texto
    respetando el formato de cada tipo de petición.
    """
    if options is not None and options.json_mode:
        document = json.loads(user_prompt.split("\n\n", 1)[1])
        return json.dumps(_prefix_strings(document), ensure_ascii=False)

    if user_prompt.startswith("Traduce estas "):
        numbered = user_prompt.split(":\n\n", 1)[1]
        sections = []
        for section in numbered.split(BATCH_SEPARATOR):
            marker, text = section.split("\n", 1)
            sections.append(f"{marker}\nES:{text}")
        return BATCH_SEPARATOR.join(sections)

    return f"ES:{user_prompt}"


def _prefix_strings(node):
    if isinstance(node, str):
        return f"ES:{node}"
    if isinstance(node, dict):
        return {k: _prefix_strings(v) for k, v in node.items()}
    if isinstance(node, list):
        return [_prefix_strings(v) for v in node]
    return node


class FakeBackend:
    """
    Sustituto del Router. responder recibe (system, user, options) y
    devuelve el texto de la respuesta o una excepción para lanzar.
    """

    def __init__(self, responder=translate_like_a_model, name: str = "fake"):
        self.name       = name
        self.calls      = []
        self._responder = responder

    async def complete(self, system_prompt, user_prompt, options=None) -> ModelResponse:
        self.calls.append((system_prompt, user_prompt, options))
        result = self._responder(system_prompt, user_prompt, options)
        if isinstance(result, Exception):
            raise result
        return ModelResponse(text=result, model_used=self.name, tokens_input=10, tokens_output=10)


@pytest.fixture
def make_backend():
    return FakeBackend


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def model_reply():
    """La respuesta perfecta, para componer respondedores que fallan a propósito."""
    return translate_like_a_model
