"""Error taxonomy for the pipeline.

Configuration errors abort a run before any record is touched, storage
errors abort the current stage, and the runner reports either as a single
StageError naming the stage that failed.
"""

from __future__ import annotations


class AiReviewError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(AiReviewError):
    """Invalid run options or scope configuration."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class StorageError(AiReviewError):
    """Reading the input stream or writing a batch failed."""


class StageError(AiReviewError):
    """A pipeline stage aborted."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"stage {stage} failed: {type(cause).__name__}: {cause}")
