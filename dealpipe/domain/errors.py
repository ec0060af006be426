# dealpipe/domain/errors.py
from __future__ import annotations


class PipelineError(ValueError):
    """Base for errors the API surfaces to callers."""


class ValidationError(PipelineError):
    pass


class NotFoundError(PipelineError):
    pass


class StateConflictError(PipelineError):
    pass


class RateLimitError(PipelineError):
    def __init__(self, message: str, limit: int) -> None:
        super().__init__(message)
        self.limit = limit
