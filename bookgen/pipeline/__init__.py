"""bookgen pipeline package.

This package contains cancellation, bounded pools, chunk state helpers,
kind-specific processors, the run orchestrator, and the task manager.
"""

from .cancellation import CancellationToken
from .orchestrator import TaskOrchestrator
from .pools import WorkerPool
from .processors import ChunkContext, IllustrationProcessor, TranslationProcessor
from .resume import (
    derive_entry_status,
    progress_fraction,
    recover_interrupted_chunks,
    select_runnable_chunks,
)
from .task_manager import TaskManager

__all__ = [
    "CancellationToken",
    "ChunkContext",
    "IllustrationProcessor",
    "TaskManager",
    "TaskOrchestrator",
    "TranslationProcessor",
    "WorkerPool",
    "derive_entry_status",
    "progress_fraction",
    "recover_interrupted_chunks",
    "select_runnable_chunks",
]
