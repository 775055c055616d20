"""Text processing components.

This package contains the token counters and the chapter-to-chunk task
splitter.
"""

from .splitter import MIN_CHAPTER_CHARS, TaskSplitter, allocate_units
from .tokens import (
    TiktokenCounter,
    TokenCounter,
    WhitespaceTokenCounter,
    token_counter_for,
)

__all__ = [
    "MIN_CHAPTER_CHARS",
    "TaskSplitter",
    "allocate_units",
    "TiktokenCounter",
    "TokenCounter",
    "WhitespaceTokenCounter",
    "token_counter_for",
]
