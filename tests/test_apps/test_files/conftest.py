"""Shared fixtures for files app tests."""

from datetime import timedelta

import boto3
import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from moto import mock_aws

from server.apps.files.exceptions import BucketNotFoundError, ObjectStoreError
from server.apps.files.infrastructure.storage import FileStorage
from server.apps.files.logic.file_service import FileService
from server.apps.files.logic.rate_limiting import (
    RequestRateLimiter,
    UploadRateLimiter,
)

User = get_user_model()


class FakeStorage:
    """In-memory object store with switchable failures.

    Attributes:
        fail_put: Error raised by put_object, if set.
        fail_delete: Error raised by delete_object, if set.
        report_missing: Make object_exists answer False.
        on_put: Callback run after a successful put, with the key.
    """

    bucket_name = 'file-vault'

    def __init__(self):
        self.objects = {}
        self.metadata = {}
        self.fail_put = None
        self.fail_delete = None
        self.report_missing = False
        self.on_put = None
        self.put_calls = 0
        self.rolled_back = []

    def put_object(self, key, content, content_type, metadata):
        self.put_calls += 1
        if self.fail_put is not None:
            raise self.fail_put
        self.objects[key] = content
        self.metadata[key] = {'content_type': content_type, **metadata}
        if self.on_put is not None:
            self.on_put(key)

    def get_object(self, key):
        try:
            return self.objects[key]
        except KeyError as error:
            raise ObjectStoreError(f'Object get failed for {key}') from error

    def delete_object(self, key):
        if self.fail_delete is not None:
            raise self.fail_delete
        self.objects.pop(key, None)

    def rollback_upload(self, key):
        self.rolled_back.append(key)
        self.objects.pop(key, None)

    def object_exists(self, key):
        return not self.report_missing and key in self.objects

    def generate_download_url(self, key, expires_in):
        return f'https://storage.test/{self.bucket_name}/{key}?expires={expires_in}'


class FakeClock:
    """Manually advanced clock for rate limiter tests."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _fast_storage_retries(settings):
    """Keep retry backoff out of test runtime."""
    settings.FILES_STORAGE_RETRY_WAIT_SECONDS = 0
    settings.FILES_KEEP_FAILED_RECORDS = False


@pytest.fixture
def owner(db):
    """Create synced test owner.

    Returns:
        User whose username is the owner identity.
    """
    return User.objects.create_user(
        username='user_1',
        email='user_1@example.com',
    )


@pytest.fixture
def other_owner(db):
    """Create second test owner for isolation tests.

    Returns:
        Second user instance.
    """
    return User.objects.create_user(
        username='user_2',
        email='user_2@example.com',
    )


@pytest.fixture
def mock_s3():
    """Mock S3 service with file-vault bucket.

    Yields:
        boto3 S3 resource with file-vault bucket created.
    """
    with mock_aws():
        conn = boto3.resource('s3', region_name='us-east-1')
        conn.create_bucket(Bucket='file-vault')
        yield conn


@pytest.fixture
def storage(mock_s3, settings):
    """Object store adapter bound to the mocked bucket.

    Returns:
        FileStorage configured from settings.
    """
    return FileStorage(**settings.STORAGES['default']['OPTIONS'])


@pytest.fixture
def fake_storage():
    """In-memory object store.

    Returns:
        FakeStorage instance.
    """
    return FakeStorage()


@pytest.fixture
def fake_clock():
    """Clock starting at a fixed moment.

    Returns:
        FakeClock instance.
    """
    return FakeClock(timezone.now().replace(microsecond=0))


@pytest.fixture
def upload_limiter(fake_clock):
    """Upload limiter with the default limits and a fake clock.

    Returns:
        UploadRateLimiter instance.
    """
    return UploadRateLimiter(
        max_requests=20,
        max_bytes=100 * 1024 * 1024,
        window=timedelta(hours=1),
        clock=fake_clock,
    )


@pytest.fixture
def request_limiter(fake_clock):
    """Request limiter with the default limits and a fake clock.

    Returns:
        RequestRateLimiter instance.
    """
    return RequestRateLimiter(
        max_requests=100,
        window=timedelta(minutes=1),
        clock=fake_clock,
    )


@pytest.fixture
def file_service(fake_storage, upload_limiter, request_limiter):
    """File service over the in-memory store.

    Returns:
        FileService instance.
    """
    return FileService(
        storage=fake_storage,
        upload_limiter=upload_limiter,
        request_limiter=request_limiter,
    )


@pytest.fixture
def missing_bucket_error():
    """Error the adapter raises for an unknown bucket.

    Returns:
        BucketNotFoundError instance.
    """
    return BucketNotFoundError('file-vault')


@pytest.fixture
def pdf_content():
    """Minimal well-formed PDF payload.

    Returns:
        PDF bytes.
    """
    return b'%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< >>\n%%EOF\n'


@pytest.fixture
def png_content():
    """Minimal PNG payload with IEND chunk.

    Returns:
        PNG bytes.
    """
    return (
        b'\x89PNG\r\n\x1a\n'
        + b'\x00\x00\x00\rIHDR' + b'\x00' * 17
        + b'\x00\x00\x00\x00IEND\xaeB`\x82'
    )


@pytest.fixture
def jpeg_content():
    """Minimal JPEG payload with end marker.

    Returns:
        JPEG bytes.
    """
    return b'\xff\xd8\xff\xe0\x00\x10JFIF\x00' + b'\x00' * 16 + b'\xff\xd9'


@pytest.fixture
def mp3_content():
    """Minimal MP3 payload with ID3 tag.

    Returns:
        MP3 bytes.
    """
    return b'ID3\x03\x00\x00\x00\x00\x00\x00' + b'\xff\xfb\x90\x00' * 8
