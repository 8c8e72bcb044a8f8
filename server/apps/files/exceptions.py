"""Exceptions for files app.

Every error that crosses the service boundary derives from
``FileServiceError`` and carries a ``code`` plus a message that is safe
to show to the caller. Object store errors stay inside the app and are
mapped to ``StorageFailureError`` by the sagas.
"""

from datetime import datetime
from typing import ClassVar


class FileServiceError(Exception):
    """Base class for errors returned to callers of the file service."""

    code: ClassVar[str] = 'internal_failure'
    default_message: ClassVar[str] = 'File operation failed'

    def __init__(self, message: str | None = None) -> None:
        """Initialize FileServiceError.

        Args:
            message: Caller-safe description, class default if omitted.
        """
        self.message = message or self.default_message
        super().__init__(self.message)


# Not found


class NotFoundError(FileServiceError):
    """Owner or file is absent, or not owned by the caller."""

    code = 'not_found'
    default_message = 'Resource not found'


class OwnerNotFoundError(NotFoundError):
    """Raised when the caller has never been provisioned."""

    default_message = 'User not found. Please ensure user is synced first.'


class FileRecordNotFoundError(NotFoundError):
    """Raised when a file record (or its object) does not exist."""

    default_message = 'File not found'


# Conflict


class ConflictError(FileServiceError):
    """Request clashes with the current state of the owner's files."""

    code = 'conflict'
    default_message = 'Conflicting file operation'


class UploadInProgressError(ConflictError):
    """Raised when a PENDING upload already exists for the same name."""

    default_message = (
        'A file with the same name is currently being uploaded. '
        'Please wait or choose a different name.'
    )


class DuplicateFileError(ConflictError):
    """Raised when a completed file with the same name already exists."""

    default_message = 'File already exists (duplicate content detected)'


# Validation


class ContentValidationError(FileServiceError):
    """Raised when content, name or claimed type is rejected."""

    code = 'validation_failed'
    default_message = 'File validation failed'


# Quota


class QuotaExceededError(FileServiceError):
    """Raised when a rate window or the storage ceiling is exhausted."""

    code = 'quota_exceeded'
    default_message = 'Quota exceeded'

    def __init__(
        self,
        message: str | None = None,
        reset_at: datetime | None = None,
    ) -> None:
        """Initialize QuotaExceededError.

        Args:
            message: Caller-safe description of the exhausted limit.
            reset_at: When the window frees up; None for the durable
                storage ceiling, which only frees up on deletion.
        """
        super().__init__(message)
        self.reset_at = reset_at


# Opaque failures


class StorageFailureError(FileServiceError):
    """Object store operation failed after retries or is misconfigured."""

    code = 'storage_failure'
    default_message = 'File storage operation failed'


class InternalFailureError(FileServiceError):
    """Any other failure, e.g. the transaction engine."""

    code = 'internal_failure'
    default_message = 'File operation failed'


# Object store (infrastructure) errors


class ObjectStoreError(Exception):
    """Raised by the object store adapter when an operation fails."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        """Initialize ObjectStoreError.

        Args:
            message: Description of the failed operation.
            transient: Whether retrying may succeed.
        """
        super().__init__(message)
        self.transient = transient


class BucketNotFoundError(ObjectStoreError):
    """Raised when the configured bucket does not exist.

    This is a configuration error and is never retried.
    """

    def __init__(self, bucket_name: str) -> None:
        """Initialize BucketNotFoundError.

        Args:
            bucket_name: Name of the missing bucket.
        """
        self.bucket_name = bucket_name
        super().__init__(
            f'Storage bucket does not exist: {bucket_name}',
            transient=False,
        )
