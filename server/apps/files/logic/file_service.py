"""File service: the operations exposed to callers of the files app.

Protocol-agnostic; a transport layer authenticates the caller and passes
the verified owner identity in. Limiter instances and the storage
adapter are injected, one service per process (see ``FilesConfig``).
"""

import logging
import uuid
from typing import TYPE_CHECKING, final

from django.apps import apps
from django.conf import settings
from django.contrib.auth.models import AbstractBaseUser
from django.core.files.storage import default_storage

from server.apps.files.exceptions import (
    FileRecordNotFoundError,
    ObjectStoreError,
    QuotaExceededError,
    StorageFailureError,
)
from server.apps.files.logic import (
    delete_operations,
    owner_operations,
    record_operations,
    upload_operations,
)
from server.apps.files.logic.descriptors import DownloadLink, FileDescriptor
from server.apps.files.logic.error_handling import internal_failure_boundary
from server.apps.files.logic.rate_limiting import (
    RequestRateLimiter,
    UploadRateLimiter,
)
from server.apps.files.models import FileStatus

if TYPE_CHECKING:
    from server.apps.files.infrastructure.storage import FileStorage

logger = logging.getLogger(__name__)

FileId = str | uuid.UUID


def _get_storage() -> 'FileStorage':
    """Get the configured default storage backend.

    Returns:
        FileStorage instance with proper S3 configuration.
    """
    return default_storage  # type: ignore[return-value]


def get_download_url_expiry() -> int:
    """Get signed URL lifetime.

    Returns:
        Seconds from settings or default of one hour.
    """
    return getattr(settings, 'FILES_DOWNLOAD_URL_EXPIRY_SECONDS', 3600)


@final
class FileService:
    """Upload, list, inspect, download and delete files per owner."""

    def __init__(
        self,
        *,
        storage: 'FileStorage | None' = None,
        upload_limiter: UploadRateLimiter | None = None,
        request_limiter: RequestRateLimiter | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            storage: Object store adapter, default storage if omitted.
            upload_limiter: Upload window limiter, from settings if omitted.
            request_limiter: Request limiter, from settings if omitted.
        """
        self._storage = storage
        self.upload_limiter = upload_limiter or UploadRateLimiter.from_settings()
        self.request_limiter = (
            request_limiter or RequestRateLimiter.from_settings()
        )

    @property
    def storage(self) -> 'FileStorage':
        """Object store adapter in use."""
        return self._storage or _get_storage()

    def sync_owner(
        self,
        owner_id: str,
        email: str = '',
        first_name: str = '',
        last_name: str = '',
    ) -> AbstractBaseUser:
        """Provision or refresh an owner before their first upload."""
        with internal_failure_boundary(f'Syncing owner {owner_id}'):
            return owner_operations.sync_owner(
                owner_id,
                email=email,
                first_name=first_name,
                last_name=last_name,
            )

    def upload_file(
        self,
        content: bytes,
        filename: str,
        mime_type: str,
        owner_id: str,
    ) -> FileDescriptor:
        """Validate and store an upload.

        Args:
            content: Raw file bytes.
            filename: Filename claimed by the client.
            mime_type: MIME type claimed by the client.
            owner_id: Verified owner identity.

        Returns:
            Descriptor of the COMPLETED file.

        Raises:
            QuotaExceededError: If a window or the storage ceiling is
                exhausted. reset_at is None for the storage ceiling,
                which frees up only when files are deleted.
        """
        with internal_failure_boundary(f'Upload for user {owner_id}'):
            record = upload_operations.upload_file(
                owner_id,
                content,
                filename,
                mime_type,
                rate_limiter=self.upload_limiter,
                storage=self.storage,
            )
            return FileDescriptor.from_record(record)

    def list_files(
        self,
        owner_id: str,
        remote_addr: str | None = None,
    ) -> list[FileDescriptor]:
        """List the owner's files, newest first."""
        self._throttle(owner_id, remote_addr)
        with internal_failure_boundary(f'Listing files of user {owner_id}'):
            return [
                FileDescriptor.from_record(record)
                for record in record_operations.list_records(owner_id)
            ]

    def get_file_metadata(
        self,
        file_id: FileId,
        owner_id: str,
        remote_addr: str | None = None,
    ) -> FileDescriptor:
        """Get one file's metadata.

        Raises:
            FileRecordNotFoundError: If the file is absent or not owned.
        """
        self._throttle(owner_id, remote_addr)
        with internal_failure_boundary(f'Reading metadata of file {file_id}'):
            record = record_operations.find_record(file_id, owner_id)
            return FileDescriptor.from_record(record)

    def get_download_url(
        self,
        file_id: FileId,
        owner_id: str,
        remote_addr: str | None = None,
    ) -> DownloadLink:
        """Issue a time-limited download URL for a COMPLETED file.

        Args:
            file_id: Record id.
            owner_id: Verified owner identity.
            remote_addr: Caller network address.

        Returns:
            DownloadLink with the signed URL and its lifetime.

        Raises:
            FileRecordNotFoundError: If the record or its object is absent.
            StorageFailureError: If the URL could not be signed.
        """
        self._throttle(owner_id, remote_addr)
        with internal_failure_boundary(f'Looking up file {file_id}'):
            record = record_operations.find_record(
                file_id,
                owner_id,
                status=FileStatus.COMPLETED,
            )
        storage = self.storage
        if not storage.object_exists(record.storage_key):
            logger.error(
                'Object missing for COMPLETED record %s: %s',
                record.id,
                record.storage_key,
            )
            raise FileRecordNotFoundError('File not found in storage')

        expires_in = get_download_url_expiry()
        try:
            url = storage.generate_download_url(record.storage_key, expires_in)
        except ObjectStoreError as error:
            logger.exception('Failed to sign download URL: %s', record.id)
            raise StorageFailureError() from error
        return DownloadLink(url=url, expires_in_seconds=expires_in)

    def delete_file(
        self,
        file_id: FileId,
        owner_id: str,
        remote_addr: str | None = None,
    ) -> None:
        """Delete a COMPLETED file and its stored object."""
        self._throttle(owner_id, remote_addr)
        delete_operations.delete_file(file_id, owner_id, storage=self.storage)

    def _throttle(self, owner_id: str | None, remote_addr: str | None) -> None:
        decision = self.request_limiter.hit(owner_id, remote_addr)
        if not decision.allowed:
            raise QuotaExceededError(decision.error, reset_at=decision.reset_at)


def get_file_service() -> FileService:
    """Get the process-wide service built when the app was loaded.

    Returns:
        FileService instance.
    """
    return apps.get_app_config('files').file_service
