"""
Error taxonomy for the ingestion pipeline.

Only TransientFetchError ends an adapter run; the others are counted per
claim and the batch carries on.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class TransientFetchError(PipelineError):
    """Upstream feed unreachable, failing, or returning undecodable JSON."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class MalformedRecord(PipelineError):
    """A single claim cannot be normalized (bad date, missing required field)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ResolutionConflict(PipelineError):
    """Actor creation conflicted and no existing actor could be adopted."""

    def __init__(self, message: str, name: Optional[str] = None):
        super().__init__(message)
        self.name = name


class WriteFailure(PipelineError):
    """The store rejected an insert or update."""
