"""Token counting used to bound chunk sizes.

The reference tokenizer is `tiktoken`'s `cl100k_base` encoding (the GPT-4
family encoding). The counter is a small protocol so callers can inject a
cheaper or offline implementation.
"""

from __future__ import annotations

from typing import Protocol

import tiktoken


class TokenCounter(Protocol):
    """Protocol for text token counters."""

    def count(self, text: str) -> int:
        """Return the number of tokens in `text`."""


class TiktokenCounter:
    """Token counter backed by a lazily loaded `tiktoken` encoding."""

    def __init__(self, encoding_name: str = "cl100k_base") -> None:
        self.encoding_name = encoding_name
        self._encoding: tiktoken.Encoding | None = None

    def _get_encoding(self) -> tiktoken.Encoding:
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding(self.encoding_name)
        return self._encoding

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._get_encoding().encode(text, disallowed_special=()))


class WhitespaceTokenCounter:
    """Approximate counter that treats each whitespace-separated word as one token."""

    def count(self, text: str) -> int:
        return len(text.split())


def token_counter_for(name: str) -> TokenCounter:
    """Return the token counter configured by name (`whitespace` or a tiktoken encoding)."""

    if name == "whitespace":
        return WhitespaceTokenCounter()
    return TiktokenCounter(encoding_name=name)
