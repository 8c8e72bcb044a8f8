"""Django app configuration for files app."""

from typing import override

from django.apps import AppConfig


class FilesConfig(AppConfig):
    """Configuration for files app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'server.apps.files'
    verbose_name = 'Files'

    @override
    def ready(self) -> None:
        """Build the process-wide file service with its limiters."""
        from server.apps.files.logic.file_service import (  # noqa: WPS433
            FileService,
        )

        self.file_service = FileService()
