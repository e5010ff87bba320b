"""
Exception hierarchy for the GEOFORA interlinking engine.

Every error raised by the core derives from :class:`InterlinkError` so API
and CLI layers can map them to responses in one place.
"""

from __future__ import annotations

from typing import Any, Optional


class InterlinkError(Exception):
    """Base exception for interlinking errors."""

    def __init__(self, message: str, detail: Optional[Any] = None):
        self.detail = detail
        super().__init__(message)


class InvalidArgument(InterlinkError, ValueError):
    """Raised on bad caller input, before any I/O is performed."""
    pass


class ContentUnavailable(InterlinkError):
    """Raised when a content collaborator (forum or main site) cannot be reached."""

    def __init__(self, message: str, source: str = "", detail: Optional[Any] = None):
        self.source = source
        super().__init__(message, detail)


class ScoringUnavailable(InterlinkError):
    """Raised when the relevance scorer times out, errors, or returns a malformed response."""
    pass


class RegistryWriteFailed(InterlinkError):
    """Raised when a single Interlink could not be persisted."""

    def __init__(self, message: str, direction: str = "forward", detail: Optional[Any] = None):
        self.direction = direction
        super().__init__(message, detail)


class FeatureNotAvailable(InterlinkError):
    """Raised when the caller's plan does not include the requested feature."""

    def __init__(self, message: str, plan: str = "", feature: str = ""):
        self.plan = plan
        self.feature = feature
        super().__init__(message)


class RunCancelled(InterlinkError):
    """Raised when a strategy run is cancelled before anything was written."""

    def __init__(self, message: str, phase: str = ""):
        self.phase = phase
        super().__init__(message)
