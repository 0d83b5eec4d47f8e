# transcription/base.py
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class TranscriptResult:
    text:     str
    language: Optional[str] = None   # ISO 639-1, si el modelo lo detecta


class Transcriber(ABC):
    """
    Contrato de los motores de transcripción.
    El processor solo habla con esta interfaz.
    """

    @abstractmethod
    async def transcribe(self, file_url: str, context: Optional[str] = None) -> TranscriptResult:
        """
        Devuelve la transcripción literal del audio.
        Puede lanzar errores de red o del proveedor: el processor los
        registra en el job y la cola decide si reintenta.
        """
        ...
