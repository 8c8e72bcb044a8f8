"""Plain data returned by the file service."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import final

from server.apps.files.models import File, FileContentType, FileStatus


@final
@dataclass(frozen=True, slots=True)
class FileDescriptor:
    """Caller-facing view of a file record.

    Storage coordinates are only filled in for trusted callers.
    """

    id: str
    owner_id: str
    name: str
    content_type: FileContentType
    size_mb: Decimal
    status: FileStatus
    uploaded_at: datetime
    storage_bucket: str | None = None
    storage_key: str | None = None

    @classmethod
    def from_record(
        cls,
        record: File,
        *,
        include_storage: bool = False,
    ) -> 'FileDescriptor':
        """Build a descriptor from a File record.

        Args:
            record: Persisted file record.
            include_storage: Whether to expose bucket and key.

        Returns:
            FileDescriptor for the record.
        """
        return cls(
            id=str(record.id),
            owner_id=record.owner_id,
            name=record.name,
            content_type=FileContentType(record.content_type),
            size_mb=record.size_mb,
            status=FileStatus(record.status),
            uploaded_at=record.uploaded_at,
            storage_bucket=record.storage_bucket if include_storage else None,
            storage_key=record.storage_key if include_storage else None,
        )


@final
@dataclass(frozen=True, slots=True)
class DownloadLink:
    """Time-limited signed download URL."""

    url: str
    expires_in_seconds: int
