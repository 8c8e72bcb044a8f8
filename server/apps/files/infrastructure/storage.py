"""Object store adapter for S3-compatible storage."""

import logging
from collections.abc import Mapping
from typing import Final, final

from botocore.client import BaseClient
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    HTTPClientError,
)
from botocore.exceptions import ConnectionError as BotoConnectionError
from django.conf import settings
from storages.backends.s3 import S3Storage
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from server.apps.files.exceptions import BucketNotFoundError, ObjectStoreError

logger = logging.getLogger(__name__)

_MAX_RETRY_WAIT_SECONDS: Final = 8

# S3 error codes worth retrying
_TRANSIENT_ERROR_CODES: Final = frozenset((
    'InternalError',
    'RequestTimeout',
    'ServiceUnavailable',
    'SlowDown',
    'Throttling',
    'ThrottlingException',
))
_MISSING_BUCKET_CODE: Final = 'NoSuchBucket'
_MISSING_OBJECT_CODES: Final = frozenset(('404', 'NoSuchKey', 'NotFound'))
_SERVER_ERROR_STATUS: Final = 500


def _get_put_max_attempts() -> int:
    """Get the attempt ceiling for object uploads.

    Returns:
        Attempt count from settings or default of 3.
    """
    return getattr(settings, 'FILES_STORAGE_PUT_MAX_ATTEMPTS', 3)


def _get_retry_wait() -> float:
    """Get the base wait between upload attempts.

    Returns:
        Seconds from settings or default of 0.5.
    """
    return getattr(settings, 'FILES_STORAGE_RETRY_WAIT_SECONDS', 0.5)


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, ObjectStoreError) and error.transient


def _error_code(error: ClientError) -> str:
    return str(error.response.get('Error', {}).get('Code', ''))


@final
class FileStorage(S3Storage):
    """Custom S3 storage backend for user files.

    Extends django-storages S3Storage with key-addressed operations
    used by the upload and delete sagas:
    - put with retry and exponential backoff on transient failures
    - get, delete and a non-raising existence probe
    - time-limited signed download URLs

    boto3/botocore errors never leave this class: they are translated
    to ObjectStoreError (or BucketNotFoundError for a missing bucket).
    """

    def put_object(
        self,
        key: str,
        content: bytes,
        content_type: str,
        metadata: Mapping[str, str],
    ) -> None:
        """Upload object content, retrying transient failures.

        Args:
            key: Object key.
            content: Raw bytes to store.
            content_type: MIME type stored with the object.
            metadata: Per-object user metadata (ASCII values).

        Raises:
            BucketNotFoundError: If the bucket is missing (not retried).
            ObjectStoreError: If the upload fails after all attempts.
        """
        retrying = Retrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(_get_put_max_attempts()),
            wait=wait_exponential(
                multiplier=_get_retry_wait(),
                max=_MAX_RETRY_WAIT_SECONDS,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            logger.info('Uploading object to storage: %s', key)
            for attempt in retrying:
                with attempt:
                    self._put_once(key, content, content_type, metadata)
        except ObjectStoreError:
            logger.exception('Failed to upload object to storage: %s', key)
            raise
        logger.info('Successfully uploaded object: %s', key)

    def get_object(self, key: str) -> bytes:
        """Download object content.

        Args:
            key: Object key.

        Returns:
            Raw object bytes.

        Raises:
            ObjectStoreError: If the object cannot be read.
        """
        try:
            response = self._client.get_object(
                Bucket=self.bucket_name,
                Key=key,
            )
            return response['Body'].read()
        except (BotoCoreError, ClientError) as error:
            raise self._translate(error, 'get', key) from error

    def delete_object(self, key: str) -> None:
        """Delete object from storage.

        Args:
            key: Object key.

        Raises:
            ObjectStoreError: If the delete call fails.
        """
        try:
            logger.info('Deleting object from storage: %s', key)
            self._client.delete_object(Bucket=self.bucket_name, Key=key)
        except (BotoCoreError, ClientError) as error:
            logger.exception('Failed to delete object from storage: %s', key)
            raise self._translate(error, 'delete', key) from error
        logger.info('Successfully deleted object: %s', key)

    def rollback_upload(self, key: str) -> None:
        """Delete an uploaded object whose record will not be committed.

        Best-effort: a failure is logged and not raised, since the
        database rollback has already happened. The object is then
        orphaned in storage without a record.

        Args:
            key: Object key.
        """
        try:
            logger.warning('Rolling back upload, deleting object: %s', key)
            self.delete_object(key)
        except ObjectStoreError:
            logger.exception(
                'Failed to rollback upload, orphaned object: %s',
                key,
            )
            return
        logger.info('Successfully rolled back upload: %s', key)

    def object_exists(self, key: str) -> bool:
        """Probe whether an object exists.

        Best-effort: any failure is logged and reported as absent.

        Args:
            key: Object key.

        Returns:
            True if a HEAD request for the key succeeds.
        """
        try:
            self._client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError as error:
            if _error_code(error) not in _MISSING_OBJECT_CODES:
                logger.warning(
                    'Existence probe failed for %s: %s',
                    key,
                    _error_code(error),
                )
            return False
        except Exception:
            logger.exception('Existence probe failed for %s', key)
            return False
        return True

    def generate_download_url(self, key: str, expires_in: int) -> str:
        """Generate a signed URL for direct client download.

        Args:
            key: Object key.
            expires_in: URL lifetime in seconds.

        Returns:
            Pre-signed GET URL.

        Raises:
            ObjectStoreError: If the URL cannot be signed.
        """
        try:
            return self.url(key, expire=expires_in)
        except (BotoCoreError, ClientError) as error:
            raise self._translate(error, 'sign', key) from error

    @property
    def _client(self) -> BaseClient:
        return self.connection.meta.client

    def _put_once(
        self,
        key: str,
        content: bytes,
        content_type: str,
        metadata: Mapping[str, str],
    ) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=content,
                ContentType=content_type,
                Metadata=dict(metadata),
            )
        except (BotoCoreError, ClientError) as error:
            raise self._translate(error, 'put', key) from error

    def _translate(
        self,
        error: BotoCoreError | ClientError,
        operation: str,
        key: str,
    ) -> ObjectStoreError:
        """Map a botocore error to the adapter's error types.

        Args:
            error: Error raised by botocore.
            operation: Short name of the failed operation.
            key: Object key involved.

        Returns:
            ObjectStoreError describing the failure.
        """
        if isinstance(error, ClientError):
            code = _error_code(error)
            if code == _MISSING_BUCKET_CODE:
                return BucketNotFoundError(self.bucket_name)
            status = error.response.get('ResponseMetadata', {}).get(
                'HTTPStatusCode',
                0,
            )
            transient = (
                code in _TRANSIENT_ERROR_CODES
                or status >= _SERVER_ERROR_STATUS
            )
            return ObjectStoreError(
                f'Object {operation} failed for {key}: {code}',
                transient=transient,
            )
        transient = isinstance(error, (BotoConnectionError, HTTPClientError))
        return ObjectStoreError(
            f'Object {operation} failed for {key}: {error}',
            transient=transient,
        )
