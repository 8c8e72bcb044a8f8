"""Database models for files app."""

import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Final, final, override

from django.conf import settings
from django.db import models

# Constants for field max lengths
_NAME_MAX_LENGTH: Final = 255
_STORAGE_KEY_MAX_LENGTH: Final = 1024
_BUCKET_MAX_LENGTH: Final = 63  # S3 bucket name limit
_CHECKSUM_MAX_LENGTH: Final = 64  # SHA256 hex length
_ENUM_MAX_LENGTH: Final = 16

_BYTES_PER_MB: Final = Decimal(1024 * 1024)
_SIZE_QUANTUM: Final = Decimal('0.01')


def bytes_to_mb(size_bytes: int) -> Decimal:
    """Convert a byte count to megabytes rounded to two decimals.

    Example: 1572864 -> Decimal('1.50')

    Args:
        size_bytes: Size in bytes.

    Returns:
        Size in MB, rounded half-up to 0.01.
    """
    return (Decimal(size_bytes) / _BYTES_PER_MB).quantize(
        _SIZE_QUANTUM,
        rounding=ROUND_HALF_UP,
    )


class FileStatus(models.TextChoices):
    """Lifecycle state of a file record.

    PENDING -> COMPLETED -> DELETING -> (row removed),
    PENDING -> FAILED when the upload saga aborts.
    """

    PENDING = 'PENDING', 'Pending'
    COMPLETED = 'COMPLETED', 'Completed'
    DELETING = 'DELETING', 'Deleting'
    FAILED = 'FAILED', 'Failed'


class FileContentType(models.TextChoices):
    """Closed set of accepted content types, derived from file bytes."""

    PDF = 'PDF', 'PDF document'
    PNG = 'PNG', 'PNG image'
    JPG = 'JPG', 'JPEG image'
    MP3 = 'MP3', 'MP3 audio'


@final
class File(models.Model):
    """Metadata record for a file stored in S3-compatible storage.

    The binary content lives in the object store under ``storage_key``,
    which follows the pattern ``users/{owner_id}/{uuid}-{name}`` and is
    never reused. A COMPLETED record always has its object in storage.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
    )

    # Owner is referenced by the identity string (auth username)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        to_field='username',
        related_name='files',
        db_index=True,
    )

    storage_bucket = models.CharField(
        max_length=_BUCKET_MAX_LENGTH,
    )

    storage_key = models.CharField(
        max_length=_STORAGE_KEY_MAX_LENGTH,
        unique=True,
        help_text='Object key: users/{owner_id}/{uuid}-{name}',
    )

    name = models.CharField(
        max_length=_NAME_MAX_LENGTH,
        help_text='Sanitized, user-facing filename',
    )

    content_type = models.CharField(
        max_length=_ENUM_MAX_LENGTH,
        choices=FileContentType.choices,
        help_text='Detected from magic numbers, not client claims',
    )

    size_mb = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text='File size in megabytes',
    )

    checksum_sha256 = models.CharField(
        max_length=_CHECKSUM_MAX_LENGTH,
        help_text='SHA256 hash of the whole content',
        db_index=True,
    )

    status = models.CharField(
        max_length=_ENUM_MAX_LENGTH,
        choices=FileStatus.choices,
        default=FileStatus.PENDING,
        db_index=True,
    )

    error_message = models.TextField(
        blank=True,
        default='',
        help_text='Set only for FAILED records',
    )

    uploaded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'File'  # type: ignore[mutable-override]
        verbose_name_plural = 'Files'  # type: ignore[mutable-override]
        ordering = ['-uploaded_at']

        indexes = [
            # Optimize recent files queries
            models.Index(
                fields=['owner', '-uploaded_at'],
                name='files_owner_recent_idx',
            ),
            models.Index(
                fields=['owner', 'name', 'status'],
                name='files_owner_name_status_idx',
            ),
        ]

        constraints = [
            # One live (pending or completed) file per owner and name;
            # closes the race between concurrent uploads of the same name
            models.UniqueConstraint(
                fields=['owner', 'name'],
                condition=models.Q(
                    status__in=[FileStatus.PENDING, FileStatus.COMPLETED],
                ),
                name='files_owner_name_live_unique',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner_id}:{self.name} ({self.status})'

