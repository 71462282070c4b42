# casetrack/exceptions.py
from typing import Any, Optional


class CaseTrackError(Exception):
    """Base class for every error raised by the geography and summary services."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(CaseTrackError):
    """Blank or missing required name, missing parent scope, malformed filter."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFound(CaseTrackError):
    """A referenced id or name does not resolve at the given hierarchy level."""

    def __init__(self, level: str, value: Any, message: Optional[str] = None):
        super().__init__(message or f"{level} '{value}' not found.")
        self.level = level
        self.value = value


class Conflict(CaseTrackError):
    """Two nodes share the same uniqueness key."""


class PersistenceFailure(CaseTrackError):
    """The store is unreachable or rejected an operation. Safe to retry."""

    retryable = True
