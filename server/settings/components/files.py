"""Limits for the file ingestion pipeline."""

from typing import Final

from server.settings.components import config

_MEBIBYTE: Final = 1024 * 1024

# Largest accepted single upload
FILES_MAX_UPLOAD_BYTES = config(
    'FILES_MAX_UPLOAD_BYTES',
    cast=int,
    default=10 * _MEBIBYTE,
)

# Upload window: request count and byte volume per owner
FILES_UPLOAD_WINDOW_SECONDS = config(
    'FILES_UPLOAD_WINDOW_SECONDS',
    cast=int,
    default=3600,
)
FILES_UPLOAD_WINDOW_MAX_REQUESTS = config(
    'FILES_UPLOAD_WINDOW_MAX_REQUESTS',
    cast=int,
    default=20,
)
FILES_UPLOAD_WINDOW_MAX_BYTES = config(
    'FILES_UPLOAD_WINDOW_MAX_BYTES',
    cast=int,
    default=100 * _MEBIBYTE,
)

# Durable per-owner ceiling over COMPLETED files
FILES_STORAGE_QUOTA_BYTES = config(
    'FILES_STORAGE_QUOTA_BYTES',
    cast=int,
    default=500 * _MEBIBYTE,
)

# Request limiter for list/download/metadata/delete
FILES_REQUEST_WINDOW_SECONDS = config(
    'FILES_REQUEST_WINDOW_SECONDS',
    cast=int,
    default=60,
)
FILES_REQUEST_WINDOW_MAX_REQUESTS = config(
    'FILES_REQUEST_WINDOW_MAX_REQUESTS',
    cast=int,
    default=100,
)

# Object store put retries (exponential backoff)
FILES_STORAGE_PUT_MAX_ATTEMPTS = config(
    'FILES_STORAGE_PUT_MAX_ATTEMPTS',
    cast=int,
    default=3,
)
FILES_STORAGE_RETRY_WAIT_SECONDS = config(
    'FILES_STORAGE_RETRY_WAIT_SECONDS',
    cast=float,
    default=0.5,
)

# Keep FAILED upload records as diagnostics instead of dropping them
FILES_KEEP_FAILED_RECORDS = config(
    'FILES_KEEP_FAILED_RECORDS',
    cast=bool,
    default=False,
)
