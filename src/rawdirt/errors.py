"""
Exception hierarchy for rawdirt.

Store adapters, the processing pipeline and the HTTP layer translate their
failures into these types so callers can decide between retrying, isolating
a single file, or rejecting a request outright.
"""

from __future__ import annotations

from typing import Optional


class RawdirtError(Exception):
    """Base exception for all rawdirt errors."""
    pass


class NotFoundError(RawdirtError):
    """Raised when an object or document does not exist in the store."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Object not found: {key}")
        self.key = key


class TransientStoreError(RawdirtError):
    """Raised on network or store failures. Callers may retry by their own policy."""
    pass


class ValidationError(RawdirtError):
    """Raised when a request is malformed. Never retried."""
    pass


class ProcessingError(RawdirtError):
    """Raised when a single file cannot be processed."""

    def __init__(self, message: str, *, file_key: Optional[str] = None) -> None:
        super().__init__(message)
        self.file_key = file_key


class DecodeError(ProcessingError):
    """Raised when the codec rejects a file or returns no pixel data."""
    pass


class UserCancellation(RawdirtError):
    """Raised into pending aggregate awaits when processing is stopped by the user."""

    def __init__(self, message: str = "Processing stopped by user") -> None:
        super().__init__(message)
