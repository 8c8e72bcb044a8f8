"""File record store: owner-scoped access to file metadata.

Every lookup is filtered by owner so no record is ever visible across
owners. Callers own the transaction boundaries.
"""

import logging
import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db.models import QuerySet, Sum  # noqa: WPS347

from server.apps.files.exceptions import FileRecordNotFoundError
from server.apps.files.models import File, FileContentType, FileStatus

logger = logging.getLogger(__name__)


def build_storage_key(owner_id: str, name: str) -> str:
    """Mint a fresh, never reused object key.

    Example: ('user_1', 'report.pdf') -> 'users/user_1/3f2a...-report.pdf'

    Args:
        owner_id: Owner identity.
        name: Sanitized filename.

    Returns:
        Storage key unique per upload attempt.
    """
    return f'users/{owner_id}/{uuid.uuid4().hex}-{name}'


def create_record(  # noqa: WPS211
    owner_id: str,
    *,
    storage_bucket: str,
    storage_key: str,
    name: str,
    content_type: FileContentType,
    size_mb: Decimal,
    checksum_sha256: str,
    status: FileStatus = FileStatus.PENDING,
    error_message: str = '',
) -> File:
    """Insert a file record.

    Args:
        owner_id: Owner identity.
        storage_bucket: Bucket holding the object.
        storage_key: Object key.
        name: Sanitized filename.
        content_type: Detected content type.
        size_mb: Size in megabytes.
        checksum_sha256: Content hash.
        status: Initial status.
        error_message: Failure description for FAILED records.

    Returns:
        Created File instance.

    Raises:
        IntegrityError: If a live record with the same name exists.
    """
    record = File.objects.create(
        owner_id=owner_id,
        storage_bucket=storage_bucket,
        storage_key=storage_key,
        name=name,
        content_type=content_type,
        size_mb=size_mb,
        checksum_sha256=checksum_sha256,
        status=status,
        error_message=error_message,
    )
    logger.info(
        'File record created: %s (ID: %s, status: %s)',
        storage_key,
        record.id,
        status,
    )
    return record


def find_record(
    file_id: str | uuid.UUID,
    owner_id: str,
    status: FileStatus | None = None,
) -> File:
    """Find a record by id, scoped to its owner.

    Args:
        file_id: Record id.
        owner_id: Owner identity.
        status: Optional required status.

    Returns:
        File instance.

    Raises:
        FileRecordNotFoundError: If absent, not owned, malformed id or
            in another status.
    """
    try:
        lookup = File.objects.filter(id=file_id, owner_id=owner_id)
        if status is not None:
            lookup = lookup.filter(status=status)
        return lookup.get()
    except (File.DoesNotExist, ValidationError, ValueError) as error:
        raise FileRecordNotFoundError() from error


def list_records(owner_id: str) -> QuerySet[File]:
    """List owner's records, newest first.

    Args:
        owner_id: Owner identity.

    Returns:
        QuerySet of File records.
    """
    return File.objects.filter(owner_id=owner_id).order_by('-uploaded_at')


def pending_upload_exists(owner_id: str, name: str) -> bool:
    """Check for an in-flight upload of the same name.

    Args:
        owner_id: Owner identity.
        name: Sanitized filename.

    Returns:
        True if a PENDING record exists.
    """
    return File.objects.filter(
        owner_id=owner_id,
        name=name,
        status=FileStatus.PENDING,
    ).exists()


def completed_name_exists(owner_id: str, name: str) -> bool:
    """Check whether a completed file already uses this name.

    Args:
        owner_id: Owner identity.
        name: Sanitized filename.

    Returns:
        True if a COMPLETED record exists.
    """
    return File.objects.filter(
        owner_id=owner_id,
        name=name,
        status=FileStatus.COMPLETED,
    ).exists()


def update_status(
    record: File,
    status: FileStatus,
    error_message: str = '',
) -> File:
    """Move a record to a new lifecycle status.

    Args:
        record: Record to update.
        status: New status.
        error_message: Set for FAILED, cleared otherwise.

    Returns:
        Updated record.
    """
    record.status = status
    record.error_message = error_message
    record.save(update_fields=['status', 'error_message'])
    logger.info('File record %s -> %s', record.id, status)
    return record


def remove_record(record: File) -> File:
    """Delete a record row, returning a detached copy for restoring.

    Args:
        record: Record to delete.

    Returns:
        Unsaved File instance holding the deleted row's values.
    """
    snapshot = File(**{
        field.attname: getattr(record, field.attname)
        for field in File._meta.concrete_fields
    })
    record.delete()
    logger.info('File record removed: %s', snapshot.id)
    return snapshot


def restore_record(snapshot: File, status: FileStatus) -> File:
    """Re-assert a removed record with the given status.

    Inserts the snapshot again if the row is gone, otherwise only
    resets its status.

    Args:
        snapshot: Values returned by remove_record.
        status: Status to restore.

    Returns:
        Restored record.
    """
    updated = File.objects.filter(id=snapshot.id).update(
        status=status,
        error_message='',
    )
    if not updated:
        uploaded_at = snapshot.uploaded_at
        snapshot.status = status
        snapshot.error_message = ''
        snapshot.save(force_insert=True)
        # auto_now_add stamps a new time on insert; keep the original
        File.objects.filter(id=snapshot.id).update(uploaded_at=uploaded_at)
        snapshot.uploaded_at = uploaded_at
    logger.info('File record restored: %s (status: %s)', snapshot.id, status)
    return snapshot


def discard_record(file_id: uuid.UUID) -> None:
    """Delete a record row by id if it is still present.

    Args:
        file_id: Record id.
    """
    deleted, _ = File.objects.filter(id=file_id).delete()
    if deleted:
        logger.info('File record discarded: %s', file_id)


def sum_completed_size_mb(owner_id: str) -> Decimal:
    """Sum sizes of owner's COMPLETED files.

    Args:
        owner_id: Owner identity.

    Returns:
        Total in megabytes.
    """
    total = File.objects.filter(
        owner_id=owner_id,
        status=FileStatus.COMPLETED,
    ).aggregate(total=Sum('size_mb'))['total']
    return total or Decimal(0)
