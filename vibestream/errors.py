from __future__ import annotations


class VibestreamError(Exception):
    """Base class for ingestion errors."""


class ConfigurationError(VibestreamError):
    """A required setting (API key, DSN) is missing or invalid. Never retried."""


class SourceError(VibestreamError):
    """A search or details call failed: quota, transport, timeout or error payload."""

    def __init__(self, message: str, *, reason: str | None = None, status: int | None = None):
        super().__init__(message)
        self.reason = reason
        self.status = status


class SearchFailedError(VibestreamError):
    """Every search query of a run failed."""


class NormalizationError(VibestreamError):
    """A raw item could not be turned into a VideoRecord."""


class StoreWriteError(VibestreamError):
    def __init__(self, video_id: str, message: str):
        super().__init__(f"upsert failed for {video_id}: {message}")
        self.video_id = video_id
