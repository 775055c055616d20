"""Top-level package for bookgen.

This package provides a resumable, concurrent content-generation task pipeline
for books: token-bounded chunk splitting, pool- and rate-limited provider
calls, and per-chunk status tracking. The main entry points are
`TaskManager` and `TaskOrchestrator`.
"""

from .pipeline import TaskManager, TaskOrchestrator

__all__ = ["TaskManager", "TaskOrchestrator", "__version__"]

__version__ = "0.1.0"
