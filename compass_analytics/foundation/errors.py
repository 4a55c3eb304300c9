"""Exception hierarchy for the analytics core.

Insufficient data is NOT an exception: kernels report it as a typed result
status.  Only configuration and computation failures raise.
"""

from __future__ import annotations


class AnalyticsError(Exception):
    """Base class for every error raised by compass-analytics."""


class ConfigurationError(AnalyticsError, ValueError):
    """A configuration update was malformed and has not been published."""


class ComputationError(AnalyticsError):
    """A kernel failed on both the background and the synchronous path."""

    def __init__(self, task_kind: str, message: str) -> None:
        super().__init__(f"{task_kind}: {message}")
        self.task_kind = task_kind
        self.message = message
