"""Tests for the delete saga."""

import uuid
from contextlib import contextmanager
from decimal import Decimal
from types import SimpleNamespace

import pytest
from django.db import DatabaseError, transaction

from server.apps.files.exceptions import (
    FileRecordNotFoundError,
    InternalFailureError,
    ObjectStoreError,
    StorageFailureError,
)
from server.apps.files.logic import delete_operations, record_operations
from server.apps.files.models import File, FileContentType, FileStatus


def _stored_record(storage, owner, name='report.pdf', status=FileStatus.COMPLETED):
    record = record_operations.create_record(
        owner.username,
        storage_bucket='file-vault',
        storage_key=record_operations.build_storage_key(owner.username, name),
        name=name,
        content_type=FileContentType.PDF,
        size_mb=Decimal('0.01'),
        checksum_sha256='a' * 64,
        status=status,
    )
    storage.put_object(record.storage_key, b'%PDF-1.4 %%EOF', 'application/pdf', {})
    return record


@pytest.mark.django_db
def test_delete_success(owner, fake_storage):
    """Test record and object are both removed."""
    record = _stored_record(fake_storage, owner)

    delete_operations.delete_file(record.id, 'user_1', storage=fake_storage)

    assert not File.objects.filter(id=record.id).exists()
    assert record.storage_key not in fake_storage.objects


@pytest.mark.django_db
def test_delete_other_owners_file(owner, other_owner, fake_storage):
    """Test files of other owners are reported as not found."""
    record = _stored_record(fake_storage, owner)

    with pytest.raises(FileRecordNotFoundError):
        delete_operations.delete_file(record.id, 'user_2', storage=fake_storage)

    assert File.objects.filter(id=record.id).exists()
    assert record.storage_key in fake_storage.objects


@pytest.mark.django_db
def test_delete_unknown_file(owner, fake_storage):
    """Test unknown id is not found."""
    with pytest.raises(FileRecordNotFoundError):
        delete_operations.delete_file(uuid.uuid4(), 'user_1', storage=fake_storage)


@pytest.mark.django_db
def test_delete_requires_completed(owner, fake_storage):
    """Test in-flight uploads cannot be deleted."""
    record = _stored_record(fake_storage, owner, status=FileStatus.PENDING)

    with pytest.raises(FileRecordNotFoundError):
        delete_operations.delete_file(record.id, 'user_1', storage=fake_storage)


@pytest.mark.django_db
def test_delete_storage_failure_keeps_record(owner, fake_storage):
    """Test object delete failure leaves the record COMPLETED."""
    record = _stored_record(fake_storage, owner)
    fake_storage.fail_delete = ObjectStoreError('delete failed')

    with pytest.raises(StorageFailureError):
        delete_operations.delete_file(record.id, 'user_1', storage=fake_storage)

    restored = File.objects.get(id=record.id)
    assert restored.status == FileStatus.COMPLETED
    assert restored.uploaded_at == record.uploaded_at
    assert fake_storage.object_exists(restored.storage_key)


@pytest.mark.django_db
def test_delete_outage_keeps_record(owner, fake_storage):
    """Test failed delete restores the record though it looks missing."""
    record = _stored_record(fake_storage, owner)
    fake_storage.fail_delete = ObjectStoreError('connect timeout', transient=True)
    fake_storage.report_missing = True

    with pytest.raises(StorageFailureError):
        delete_operations.delete_file(record.id, 'user_1', storage=fake_storage)

    assert File.objects.get(id=record.id).status == FileStatus.COMPLETED
    assert record.storage_key in fake_storage.objects


@pytest.mark.django_db
def test_delete_interrupted_keeps_record(owner, fake_storage, monkeypatch):
    """Test a delete call that raised never drops the record."""
    record = _stored_record(fake_storage, owner)

    def interrupted_delete(key):
        raise RuntimeError('connection reset')

    monkeypatch.setattr(fake_storage, 'delete_object', interrupted_delete)

    with pytest.raises(InternalFailureError):
        delete_operations.delete_file(record.id, 'user_1', storage=fake_storage)

    assert File.objects.get(id=record.id).status == FileStatus.COMPLETED


@pytest.mark.django_db
def test_delete_commit_failure_after_object_removed(
    owner,
    fake_storage,
    monkeypatch,
):
    """Test no COMPLETED row survives once its object is gone."""
    record = _stored_record(fake_storage, owner)

    @contextmanager
    def atomic_failing_on_commit():
        with transaction.atomic():
            yield
            raise DatabaseError('could not commit')

    monkeypatch.setattr(
        delete_operations,
        'transaction',
        SimpleNamespace(atomic=atomic_failing_on_commit),
    )

    with pytest.raises(InternalFailureError) as exc_info:
        delete_operations.delete_file(record.id, 'user_1', storage=fake_storage)

    assert 'commit' not in exc_info.value.message
    assert record.storage_key not in fake_storage.objects
    assert not File.objects.filter(id=record.id).exists()


@pytest.mark.django_db
def test_delete_lookup_database_error(owner, fake_storage, monkeypatch):
    """Test database errors during lookup surface as internal failure."""
    record = _stored_record(fake_storage, owner)

    def broken_find(file_id, owner_id, status=None):
        raise DatabaseError('connection to server at 10.0.0.5 failed')

    monkeypatch.setattr(record_operations, 'find_record', broken_find)

    with pytest.raises(InternalFailureError) as exc_info:
        delete_operations.delete_file(record.id, 'user_1', storage=fake_storage)

    assert exc_info.value.code == 'internal_failure'
    assert '10.0.0.5' not in exc_info.value.message
    assert record.storage_key in fake_storage.objects


@pytest.mark.django_db
def test_delete_on_mocked_s3(owner, storage):
    """Test the saga end to end against the S3 adapter."""
    record = _stored_record(storage, owner)

    delete_operations.delete_file(str(record.id), 'user_1', storage=storage)

    assert not File.objects.filter(id=record.id).exists()
    assert storage.object_exists(record.storage_key) is False
