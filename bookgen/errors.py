"""Domain exceptions for task runs and CLI diagnostics.

The run-level taxonomy is:

- `TransientProviderError`: a backend call failed (network, timeout, HTTP).
  Terminal for the chunk that issued it.
- `MalformedModelOutput`: language-model text could not be turned into the
  expected JSON shape. Retried once per chunk, then terminal for the chunk.
- `CancellationRequested`: control signal raised when a run is canceled.
- `PersistenceError`: saving the book or the chunk list failed. Fatal for the
  whole run.
"""

from __future__ import annotations


class BookgenError(RuntimeError):
    """Base class for task pipeline errors."""


class TransientProviderError(BookgenError):
    """Raised when a generation or language-model backend call fails."""

    def __init__(
        self,
        message: str,
        *,
        failure_kind: str = "unknown",
        status_code: int | None = None,
    ) -> None:
        """Initialize provider failure metadata for chunk-level diagnostics."""

        super().__init__(message)
        self.failure_kind = failure_kind
        self.status_code = status_code


class MalformedModelOutput(BookgenError):
    """Raised when model output is not parseable into the expected structure."""


class CancellationRequested(BookgenError):
    """Raised to unwind a run after its cancellation token was set."""


class PersistenceError(BookgenError):
    """Raised when the book tree or chunk list cannot be persisted."""


class PipelineStageError(RuntimeError):
    """Raised when a specific CLI-facing stage fails."""

    def __init__(
        self,
        *,
        stage: str,
        detail: str,
        hint: str | None = None,
    ) -> None:
        """Initialize a stage-scoped pipeline error."""

        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint
