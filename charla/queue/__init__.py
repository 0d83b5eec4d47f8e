# queue/__init__.py
from charla.queue.base import WorkQueue
from charla.queue.models import (
    TRANSCRIBE_TASK,
    Backoff, InvalidPayloadError, QueueTask, RetryPolicy,
    StalledLimitError, TaskState, TranscriptionPayload,
)
from charla.queue.sqlite_queue import SqliteWorkQueue
from charla.queue.worker import QueueWorker

__all__ = [
    "WorkQueue", "SqliteWorkQueue", "QueueWorker",
    "TRANSCRIBE_TASK",
    "Backoff", "InvalidPayloadError", "QueueTask", "RetryPolicy",
    "StalledLimitError", "TaskState", "TranscriptionPayload",
]
