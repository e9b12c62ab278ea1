"""
Error taxonomy for blocklift.

Structural (schema-mutating) steps fail fast and let these propagate;
per-record data migration catches RecordMutationError, logs it and moves on.
"""

from typing import Optional


class BlockLiftError(Exception):
    """Base class for all blocklift errors."""


class ContentAPIError(BlockLiftError):
    """
    Raised by content clients when the API rejects a call.

    Attributes:
        status_code: HTTP status code when the error came from the wire
        details: Raw error payload, if any
    """

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[object] = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class SchemaResolutionError(BlockLiftError):
    """Raised when the schema graph around a block cannot be enumerated."""


class NoUsageError(BlockLiftError):
    """Raised when the target block is not embedded in any field."""


class RecordMutationError(BlockLiftError):
    """Raised when creating, updating or publishing a single record fails."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class IdentifierCollisionError(BlockLiftError):
    """Raised when no unique model name/api_key could be generated."""
