"""Exception types shared across the pipeline."""

from __future__ import annotations


class LetterIntelError(Exception):
    """Base class for all letterintel errors."""


class TransientExternalError(LetterIntelError):
    """A collaborator failed in a way that is worth retrying (throttling, lock, blip)."""


class PayloadTooLargeError(LetterIntelError):
    """A write was rejected for size. Callers split the batch and retry."""

    def __init__(self, message: str, size: int = 0, limit: int = 0):
        super().__init__(message)
        self.size = size
        self.limit = limit


class MalformedResponseError(LetterIntelError):
    """Model output could not be parsed even after repair."""


class NotFoundError(LetterIntelError):
    """A requested record does not exist."""


class ConfigurationError(LetterIntelError):
    """Required configuration or credentials are missing."""


class GenerationError(LetterIntelError):
    """The generative model returned a non-success response."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage


class CallTimeoutError(LetterIntelError):
    """An external call exceeded its wall-clock budget."""


class ReconciliationSafetyError(LetterIntelError):
    """Chunk reconciliation would have deleted a row with no duplicate."""


class PipelineStageError(LetterIntelError):
    """A pipeline stage aborted the run."""

    def __init__(self, stage: str, action: str, cause: Exception | None = None):
        msg = f"Pipeline stage '{stage}' failed during {action}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
        self.stage = stage
        self.action = action
