"""Exception hierarchy for threadline."""

from __future__ import annotations


class ThreadlineError(Exception):
    """Base class for all threadline errors."""


class ThreadStorageError(ThreadlineError):
    """Raised when a thread snapshot cannot be written or read."""
