"""Exceptions raised by the sync layer.

Transport errors are retried by adapters, validation errors are recorded in
sync reports, and only orchestration errors fail a SyncRun.
"""
from typing import Optional


class SyncError(Exception):
    """Base class for sync layer errors."""


class TransportError(SyncError):
    """An upstream fetch failed (network error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class UnsupportedContentType(SyncError):
    """No parser is registered for a fetched document's content type."""


class BatchValidationError(SyncError):
    """A fetched batch failed its structural guard and was rejected whole."""


class UnknownSourceError(SyncError, ValueError):
    """A caller named a source the orchestrator has no adapter for."""


class InvalidSyncTransition(SyncError):
    """A SyncRun was moved through an illegal status transition."""


class AuditWriteError(SyncError):
    """The SyncRun audit record could not be written."""
