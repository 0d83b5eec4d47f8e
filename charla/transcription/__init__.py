# transcription/__init__.py
from charla.transcription.base import Transcriber, TranscriptResult
from charla.transcription.processor import TranscriptionProcessor

__all__ = ["Transcriber", "TranscriptResult", "TranscriptionProcessor"]
