"""Infrastructure layer for files app.

This package contains integrations with external systems:
- S3-compatible object store adapter (S3/MinIO/R2)
- Byte-level inspection (magic numbers, structure, checksum, names)

Keep infrastructure concerns separate from business logic.
"""
