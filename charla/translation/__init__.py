# translation/__init__.py
from charla.translation.engine import (
    BatchResult, BatchState, TranslationBatchEngine,
    TranslationConfig,
)
from charla.translation.locales import (
    SUPPORTED_LOCALES, Locale, UnsupportedLocaleError, get_locale_by_code,
)
from charla.translation.orchestrator import (
    TranscriptionNotFoundError, TranslateConversationResult,
    TranslationOrchestrator, TranslationStatus,
)

__all__ = [
    "BatchResult", "BatchState", "TranslationBatchEngine",
    "TranslationConfig",
    "SUPPORTED_LOCALES", "Locale", "UnsupportedLocaleError", "get_locale_by_code",
    "TranscriptionNotFoundError", "TranslateConversationResult",
    "TranslationOrchestrator", "TranslationStatus",
]
