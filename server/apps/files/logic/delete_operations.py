"""Delete saga: remove a COMPLETED file's record and object together."""

import logging
import uuid
from functools import partial
from typing import TYPE_CHECKING

from django.db import transaction

from server.apps.files.exceptions import (
    FileServiceError,
    InternalFailureError,
    ObjectStoreError,
    StorageFailureError,
)
from server.apps.files.logic import record_operations
from server.apps.files.logic.error_handling import internal_failure_boundary
from server.apps.files.logic.saga import CompensationStack
from server.apps.files.models import File, FileStatus

if TYPE_CHECKING:
    from server.apps.files.infrastructure.storage import FileStorage

logger = logging.getLogger(__name__)


def delete_file(
    file_id: str | uuid.UUID,
    owner_id: str,
    *,
    storage: 'FileStorage',
) -> None:
    """Delete a COMPLETED file owned by the caller.

    Inside one transaction the record is marked DELETING and removed,
    then the object is deleted. If the object delete fails the
    transaction rolls back and the record is re-asserted as COMPLETED.

    Args:
        file_id: Record id.
        owner_id: Verified identity of the caller.
        storage: Object store adapter.

    Raises:
        FileRecordNotFoundError: If no COMPLETED record is owned by caller.
        StorageFailureError: If the object could not be deleted.
        InternalFailureError: On any other failure.
    """
    with internal_failure_boundary(f'Looking up file {file_id} for delete'):
        record = record_operations.find_record(
            file_id,
            owner_id,
            status=FileStatus.COMPLETED,
        )
    record_id = record.id
    logger.info('Deleting file: ID=%s, key=%s', record_id, record.storage_key)

    compensations = CompensationStack()
    # Keys whose delete_object call returned without error
    deleted_keys: set[str] = set()
    try:
        with transaction.atomic():
            record_operations.update_status(record, FileStatus.DELETING)
            snapshot = record_operations.remove_record(record)
            compensations.push(
                f'restore record {snapshot.id}',
                partial(_restore_record, snapshot, deleted_keys),
            )
            _delete_content(storage, snapshot.storage_key)
            deleted_keys.add(snapshot.storage_key)
    except FileServiceError:
        compensations.unwind()
        raise
    except Exception as error:
        logger.exception('Delete failed unexpectedly: ID=%s', record_id)
        compensations.unwind()
        raise InternalFailureError() from error

    logger.info('File deleted: ID=%s', record_id)


def _delete_content(storage: 'FileStorage', storage_key: str) -> None:
    try:
        storage.delete_object(storage_key)
    except ObjectStoreError as error:
        logger.exception('Object store delete failed: %s', storage_key)
        raise StorageFailureError() from error


def _restore_record(snapshot: File, deleted_keys: set[str]) -> None:
    """Put the record back as COMPLETED unless its object was deleted.

    Only a delete call that returned proves the object is gone; the
    record is then dropped so no COMPLETED row points at nothing. A
    failed or interrupted delete always restores the record.
    """
    if snapshot.storage_key in deleted_keys:
        logger.warning(
            'Object removed but delete not committed, dropping record: ID=%s',
            snapshot.id,
        )
        record_operations.discard_record(snapshot.id)
        return
    record_operations.restore_record(snapshot, FileStatus.COMPLETED)
