"""Persistence components for bookgen.

This package contains the persistence contract used by task runs and the JSON
filesystem store that implements it.
"""

from .storage import JsonTaskStore, TaskPersistence

__all__ = ["JsonTaskStore", "TaskPersistence"]
