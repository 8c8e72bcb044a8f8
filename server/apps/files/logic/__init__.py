"""Business logic layer for files app.

This package contains all business logic for file operations:
- Upload and delete sagas with compensation on partial failure
- Content validation of uploads
- Rate limiting and storage quota
- Owner-scoped record access and owner provisioning

``file_service.FileService`` is the entry point for callers. Keep
business logic here, separate from models (data layer) and
infrastructure (external systems).
"""
