"""Content validation for uploads.

Bytes are inspected before any client claim is trusted. The result of
``validate_upload`` carries the sanitized name and detected type that
the upload saga must use for storage and metadata.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final, final

from django.conf import settings

from server.apps.files.infrastructure.metadata import (
    MIME_TO_CONTENT_TYPE,
    calculate_checksum,
    check_structure,
    detect_mime_type,
    normalize_mime_type,
    sanitize_filename,
)
from server.apps.files.logic import record_operations
from server.apps.files.models import FileContentType

logger = logging.getLogger(__name__)

_DEFAULT_MAX_UPLOAD_BYTES: Final = 10 * 1024 * 1024

# (owner_id, sanitized_name) -> a COMPLETED file already has this name
NameLookup = Callable[[str, str], bool]


@final
@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of validating one upload.

    Exactly one of ``error`` (rejected) or the detected fields
    (accepted) is meaningful; ``is_duplicate`` marks a rejection caused
    by an existing file with the same name.
    """

    ok: bool
    detected_type: FileContentType | None = None
    detected_mime_type: str | None = None
    sanitized_name: str | None = None
    content_hash: str | None = None
    error: str | None = None
    is_duplicate: bool = False

    @classmethod
    def rejected(
        cls,
        error: str,
        *,
        is_duplicate: bool = False,
    ) -> 'ValidationResult':
        """Build a rejected result."""
        return cls(ok=False, error=error, is_duplicate=is_duplicate)


def get_max_upload_bytes() -> int:
    """Get maximum accepted upload size.

    Returns:
        Size limit in bytes from settings or default of 10 MiB.
    """
    return getattr(
        settings,
        'FILES_MAX_UPLOAD_BYTES',
        _DEFAULT_MAX_UPLOAD_BYTES,
    )


def validate_upload(  # noqa: WPS212
    content: bytes,
    claimed_mime_type: str,
    claimed_name: str,
    owner_id: str,
    *,
    completed_name_exists: NameLookup = record_operations.completed_name_exists,
) -> ValidationResult:
    """Validate upload content, name and claimed type.

    Steps run in order and stop at the first failure:
    size, filename, magic numbers, claimed MIME type, structure,
    hash, duplicate name.

    Args:
        content: Raw file bytes.
        claimed_mime_type: MIME type sent by the client.
        claimed_name: Filename sent by the client.
        owner_id: Identity of the uploading user.
        completed_name_exists: Lookup for the duplicate-name policy.

    Returns:
        ValidationResult, accepted or rejected with a readable reason.
    """
    max_bytes = get_max_upload_bytes()
    if not content:
        return ValidationResult.rejected('Empty file not allowed')
    if len(content) > max_bytes:
        return ValidationResult.rejected(
            f'File too large. Maximum size is {max_bytes // (1024 * 1024)}MB',
        )

    sanitized_name = sanitize_filename(claimed_name)
    if sanitized_name is None:
        return ValidationResult.rejected('Invalid or dangerous filename')

    detected_mime_type = detect_mime_type(content)
    if detected_mime_type is None:
        return ValidationResult.rejected(
            'File type could not be verified. '
            'File may be corrupted or unsupported.',
        )

    if normalize_mime_type(claimed_mime_type) != detected_mime_type:
        return ValidationResult.rejected(
            "File extension doesn't match content. "
            f'Detected: {detected_mime_type}, Claimed: {claimed_mime_type}',
        )

    structure_error = check_structure(content, detected_mime_type)
    if structure_error is not None:
        return ValidationResult.rejected(structure_error)

    content_hash = calculate_checksum(content)

    if completed_name_exists(owner_id, sanitized_name):
        return ValidationResult.rejected(
            'File already exists (duplicate content detected)',
            is_duplicate=True,
        )

    logger.info(
        'File validation passed for %s, type: %s',
        sanitized_name,
        detected_mime_type,
    )
    return ValidationResult(
        ok=True,
        detected_type=MIME_TO_CONTENT_TYPE[detected_mime_type],
        detected_mime_type=detected_mime_type,
        sanitized_name=sanitized_name,
        content_hash=content_hash,
    )
