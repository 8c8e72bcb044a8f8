"""Django storage configuration for S3-compatible backends.

This module configures django-storages to work with:
- MinIO for local development
- Any S3-compatible provider in production

The ``default`` storage is the object store adapter used by the
upload and delete sagas.
"""

from typing import Any, Final

from server.settings.components import config

# Signed download URLs are valid for one hour
FILES_DOWNLOAD_URL_EXPIRY_SECONDS: Final = 3600

# User files live in S3-compatible storage
STORAGES: Final[dict[str, dict[str, Any]]] = {
    'default': {
        'BACKEND': 'server.apps.files.infrastructure.storage.FileStorage',
        'OPTIONS': {
            'bucket_name': config(
                'AWS_STORAGE_BUCKET_NAME',
                default='file-vault',
            ),
            'access_key': config('AWS_ACCESS_KEY_ID', default='minioadmin'),
            'secret_key': config(
                'AWS_SECRET_ACCESS_KEY',
                default='minioadmin',
            ),
            'endpoint_url': config(
                'AWS_S3_ENDPOINT_URL',
                default=None,
            ),
            'region_name': config(
                'AWS_S3_REGION_NAME',
                default='us-east-1',
            ),
            'file_overwrite': False,  # Prevent accidental overwrites
            'default_acl': None,  # Inherit bucket ACL
            'querystring_auth': True,  # Signed URLs for direct download
            'querystring_expire': FILES_DOWNLOAD_URL_EXPIRY_SECONDS,
        },
    },
}
