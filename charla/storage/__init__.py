# storage/__init__.py
from charla.storage.base import JobStore, TranslationStore
from charla.storage.repository import Repository
from charla.storage.models import (
    DELETE_FIELD,
    Content, JobStatus, SourceType,
    StoredAnalysis, StoredJob, StoredTranslation,
    StructuredContent, TextContent,
)

__all__ = [
    "JobStore", "TranslationStore", "Repository",
    "DELETE_FIELD",
    "Content", "JobStatus", "SourceType",
    "StoredAnalysis", "StoredJob", "StoredTranslation",
    "StructuredContent", "TextContent",
]
