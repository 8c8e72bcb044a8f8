"""Business logic for storage quota operations."""

import logging
from decimal import Decimal
from typing import Final

from django.conf import settings

from server.apps.files.exceptions import QuotaExceededError
from server.apps.files.logic import record_operations
from server.apps.files.logic.rate_limiting import (
    RateLimitDecision,
    UploadRateLimiter,
)

logger = logging.getLogger(__name__)

_BYTES_PER_MB: Final = 1024 * 1024
_DEFAULT_STORAGE_QUOTA_BYTES: Final = 500 * _BYTES_PER_MB


def get_storage_quota_bytes() -> int:
    """Get the per-owner storage ceiling.

    Returns:
        Quota in bytes from settings or default of 500 MiB.
    """
    return getattr(
        settings,
        'FILES_STORAGE_QUOTA_BYTES',
        _DEFAULT_STORAGE_QUOTA_BYTES,
    )


def get_used_bytes(owner_id: str) -> int:
    """Compute owner's storage usage from COMPLETED records.

    Sizes are stored in megabytes with two decimals, so the result is
    an approximation of the true byte count.

    Args:
        owner_id: Owner identity.

    Returns:
        Used storage in bytes.
    """
    used_mb = record_operations.sum_completed_size_mb(owner_id)
    return int(used_mb * Decimal(_BYTES_PER_MB))


def check_storage_quota(owner_id: str, size_bytes: int) -> None:
    """Check if owner has enough storage left for an upload.

    Args:
        owner_id: Owner identity.
        size_bytes: Size of the upload in bytes.

    Raises:
        QuotaExceededError: If upload would exceed the storage ceiling.
    """
    quota_bytes = get_storage_quota_bytes()
    used_bytes = get_used_bytes(owner_id)

    if used_bytes + size_bytes > quota_bytes:
        logger.warning(
            'Storage quota exceeded for user %s: need %d, have %d available',
            owner_id,
            size_bytes,
            max(0, quota_bytes - used_bytes),
        )
        raise QuotaExceededError(
            'Storage quota exceeded. '
            f'Using {used_bytes // _BYTES_PER_MB}MB of '
            f'{quota_bytes // _BYTES_PER_MB}MB',
        )


def check_and_reserve(
    limiter: UploadRateLimiter,
    owner_id: str,
    size_bytes: int,
) -> None:
    """Reserve an upload slot against rate windows and storage quota.

    The storage check runs under the limiter's per-owner lock, so two
    uploads from the same process cannot both pass on the same usage.

    Args:
        limiter: Upload window limiter.
        owner_id: Owner identity.
        size_bytes: Size of the upload in bytes.

    Raises:
        QuotaExceededError: If any limit would be exceeded.
    """
    decision: RateLimitDecision = limiter.check_and_reserve(
        owner_id,
        size_bytes,
        durable_check=lambda: check_storage_quota(owner_id, size_bytes),
    )
    if not decision.allowed:
        raise QuotaExceededError(decision.error, reset_at=decision.reset_at)
