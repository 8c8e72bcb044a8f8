"""Upload saga: record and object written together or not at all.

Sequence: owner, quota, validation, in-flight check, then inside one
database transaction: PENDING record, object put, existence probe,
COMPLETED. Once the object is stored its deletion is pushed on the
compensation stack, so any later failure (probe, status update, commit)
removes it again.
"""

import logging
from functools import partial
from typing import TYPE_CHECKING
from urllib.parse import quote

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction

from server.apps.files.exceptions import (
    ContentValidationError,
    DuplicateFileError,
    FileServiceError,
    InternalFailureError,
    ObjectStoreError,
    StorageFailureError,
    UploadInProgressError,
)
from server.apps.files.logic import (
    owner_operations,
    quota_operations,
    record_operations,
)
from server.apps.files.logic.error_handling import internal_failure_boundary
from server.apps.files.logic.rate_limiting import UploadRateLimiter
from server.apps.files.logic.saga import CompensationStack
from server.apps.files.logic.validation import (
    ValidationResult,
    validate_upload,
)
from server.apps.files.models import File, FileStatus, bytes_to_mb

if TYPE_CHECKING:
    from server.apps.files.infrastructure.storage import FileStorage

logger = logging.getLogger(__name__)

# Stored on retained FAILED rows; details stay in the logs
_FAILED_UPLOAD_MESSAGE = 'Upload failed'


def upload_file(  # noqa: WPS211
    owner_id: str,
    content: bytes,
    claimed_name: str,
    claimed_mime_type: str,
    *,
    rate_limiter: UploadRateLimiter,
    storage: 'FileStorage',
) -> File:
    """Validate and store a file, creating its COMPLETED record.

    Args:
        owner_id: Verified identity of the uploader.
        content: Raw file bytes.
        claimed_name: Filename sent by the client.
        claimed_mime_type: MIME type sent by the client.
        rate_limiter: Upload window limiter.
        storage: Object store adapter.

    Returns:
        The COMPLETED record, re-read after commit.

    Raises:
        OwnerNotFoundError: If the owner was never synced.
        QuotaExceededError: If a rate window or the quota is exhausted.
        ContentValidationError: If content, name or type is rejected.
        DuplicateFileError: If a completed file has the same name.
        UploadInProgressError: If the same name is being uploaded.
        StorageFailureError: If the object store write failed.
        InternalFailureError: On any other failure.
    """
    with internal_failure_boundary(f'Upload checks for user {owner_id}'):
        validation = _check_upload(
            owner_id,
            content,
            claimed_name,
            claimed_mime_type,
            rate_limiter,
        )

    name = validation.sanitized_name
    storage_key = record_operations.build_storage_key(owner_id, name)
    compensations = CompensationStack()
    record_created = False
    try:
        with transaction.atomic():
            record = _create_pending_record(
                owner_id,
                storage,
                storage_key,
                validation,
                len(content),
            )
            record_created = True

            _put_content(
                storage,
                storage_key,
                content,
                validation,
                {'owner-id': owner_id, 'original-name': quote(claimed_name)},
            )
            compensations.push(
                f'delete uploaded object {storage_key}',
                partial(storage.rollback_upload, storage_key),
            )

            if not storage.object_exists(storage_key):
                logger.error(
                    'Uploaded object missing after put: %s',
                    storage_key,
                )
                raise StorageFailureError()

            record_operations.update_status(record, FileStatus.COMPLETED)
    except FileServiceError as error:
        compensations.unwind()
        if record_created and isinstance(error, StorageFailureError):
            _keep_failed_record(
                owner_id,
                storage,
                storage_key,
                validation,
                len(content),
            )
        raise
    except Exception as error:
        logger.exception('Upload failed unexpectedly: %s', storage_key)
        compensations.unwind()
        if record_created:
            _keep_failed_record(
                owner_id,
                storage,
                storage_key,
                validation,
                len(content),
            )
        raise InternalFailureError() from error

    with internal_failure_boundary(f'Reading stored upload {storage_key}'):
        record.refresh_from_db()
    logger.info(
        'Upload completed for user %s: %s (ID: %s)',
        owner_id,
        name,
        record.id,
    )
    return record


def _check_upload(
    owner_id: str,
    content: bytes,
    claimed_name: str,
    claimed_mime_type: str,
    rate_limiter: UploadRateLimiter,
) -> ValidationResult:
    """Run owner, quota, validation and in-flight checks in order."""
    owner_operations.resolve_owner(owner_id)
    quota_operations.check_and_reserve(rate_limiter, owner_id, len(content))

    validation = validate_upload(
        content,
        claimed_mime_type,
        claimed_name,
        owner_id,
    )
    if not validation.ok:
        logger.warning(
            'Upload rejected for user %s: %s',
            owner_id,
            validation.error,
        )
        if validation.is_duplicate:
            raise DuplicateFileError(validation.error)
        raise ContentValidationError(validation.error)

    if record_operations.pending_upload_exists(
        owner_id,
        validation.sanitized_name,
    ):
        logger.warning(
            'Concurrent upload detected for user %s, file %s',
            owner_id,
            validation.sanitized_name,
        )
        raise UploadInProgressError()
    return validation


def _create_pending_record(
    owner_id: str,
    storage: 'FileStorage',
    storage_key: str,
    validation: ValidationResult,
    size_bytes: int,
) -> File:
    """Insert the PENDING record for this upload attempt.

    Raises:
        UploadInProgressError: If a live record with the name appeared
            since the pre-check.
    """
    try:
        return record_operations.create_record(
            owner_id,
            storage_bucket=storage.bucket_name,
            storage_key=storage_key,
            name=validation.sanitized_name,
            content_type=validation.detected_type,
            size_mb=bytes_to_mb(size_bytes),
            checksum_sha256=validation.content_hash,
        )
    except IntegrityError as error:
        logger.warning(
            'Live record already exists for user %s, file %s',
            owner_id,
            validation.sanitized_name,
        )
        raise UploadInProgressError() from error


def _put_content(
    storage: 'FileStorage',
    storage_key: str,
    content: bytes,
    validation: ValidationResult,
    metadata: dict[str, str],
) -> None:
    try:
        storage.put_object(
            storage_key,
            content,
            validation.detected_mime_type,
            metadata,
        )
    except ObjectStoreError as error:
        logger.exception('Object store write failed: %s', storage_key)
        raise StorageFailureError() from error


def _keep_failed_record(
    owner_id: str,
    storage: 'FileStorage',
    storage_key: str,
    validation: ValidationResult,
    size_bytes: int,
) -> None:
    """Write a FAILED row for an aborted upload, if retention is enabled.

    Runs after the upload transaction was rolled back. The row has no
    object behind it and is not counted against the storage quota.
    """
    if not getattr(settings, 'FILES_KEEP_FAILED_RECORDS', False):
        return
    try:
        with transaction.atomic():
            record_operations.create_record(
                owner_id,
                storage_bucket=storage.bucket_name,
                storage_key=storage_key,
                name=validation.sanitized_name,
                content_type=validation.detected_type,
                size_mb=bytes_to_mb(size_bytes),
                checksum_sha256=validation.content_hash,
                status=FileStatus.FAILED,
                error_message=_FAILED_UPLOAD_MESSAGE,
            )
    except DatabaseError:
        logger.exception('Could not keep FAILED record: %s', storage_key)
