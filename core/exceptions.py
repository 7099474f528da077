"""Exception hierarchy for the face identity engine."""

from __future__ import annotations

from typing import Optional


class FaceRecognitionError(Exception):
    """Base exception for face identity operations."""

    def __init__(self, message: str, details: Optional[dict] = None) -> None:
        """
        Args:
            message: Error description.
            details: Additional error context (paths, versions, ...).
        """
        super().__init__(message)
        self.details = details or {}


class DatabaseLoadError(FaceRecognitionError):
    """Raised when the database root is missing, not a directory or unreadable."""


class DatabaseNotAvailableError(FaceRecognitionError):
    """Raised when the database is queried before loading or after shutdown."""


class WatchError(FaceRecognitionError):
    """Raised when filesystem observation of the database root cannot be set up."""


class InvalidImageError(FaceRecognitionError):
    """Raised when an image cannot be decoded or is structurally invalid."""
