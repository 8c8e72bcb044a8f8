import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='File',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('storage_bucket', models.CharField(max_length=63)),
                ('storage_key', models.CharField(help_text='Object key: users/{owner_id}/{uuid}-{name}', max_length=1024, unique=True)),
                ('name', models.CharField(help_text='Sanitized, user-facing filename', max_length=255)),
                ('content_type', models.CharField(choices=[('PDF', 'PDF document'), ('PNG', 'PNG image'), ('JPG', 'JPEG image'), ('MP3', 'MP3 audio')], help_text='Detected from magic numbers, not client claims', max_length=16)),
                ('size_mb', models.DecimalField(decimal_places=2, help_text='File size in megabytes', max_digits=10)),
                ('checksum_sha256', models.CharField(db_index=True, help_text='SHA256 hash of the whole content', max_length=64)),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('COMPLETED', 'Completed'), ('DELETING', 'Deleting'), ('FAILED', 'Failed')], db_index=True, default='PENDING', max_length=16)),
                ('error_message', models.TextField(blank=True, default='', help_text='Set only for FAILED records')),
                ('uploaded_at', models.DateTimeField(auto_now_add=True)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='files', to=settings.AUTH_USER_MODEL, to_field='username')),
            ],
            options={
                'verbose_name': 'File',
                'verbose_name_plural': 'Files',
                'ordering': ['-uploaded_at'],
                'indexes': [
                    models.Index(fields=['owner', '-uploaded_at'], name='files_owner_recent_idx'),
                    models.Index(fields=['owner', 'name', 'status'], name='files_owner_name_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status__in', ['PENDING', 'COMPLETED'])), fields=('owner', 'name'), name='files_owner_name_live_unique'),
                ],
            },
        ),
    ]
