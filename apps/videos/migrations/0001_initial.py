# Generated manually on 2026-10-19 09:00

import django.db.models.deletion
import uuid
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("courses", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="VideoAsset",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("object_key", models.CharField(max_length=512, verbose_name="Storage Key")),
                ("storage_url", models.TextField(verbose_name="Storage URL")),
                ("hls_url", models.TextField(blank=True, null=True, verbose_name="HLS Master URL")),
                ("file_name", models.CharField(blank=True, max_length=255, verbose_name="Original File Name")),
                ("content_type", models.CharField(blank=True, max_length=100, verbose_name="Content Type")),
                ("size_bytes", models.BigIntegerField(default=0, verbose_name="File Size (bytes)")),
                ("content_hash", models.CharField(blank=True, max_length=32, verbose_name="MD5 Content Hash")),
                ("status", models.CharField(
                    choices=[
                        ("processing", "Processing"),
                        ("retrying", "Retrying"),
                        ("ready", "Ready"),
                        ("failed", "Failed"),
                    ],
                    default="processing",
                    max_length=20,
                )),
                ("processing_attempts", models.PositiveSmallIntegerField(default=0, verbose_name="Processing Attempts")),
                ("processing_error", models.TextField(blank=True, null=True, verbose_name="Processing Error")),
                ("supports_adaptive_streaming", models.BooleanField(default=False)),
                ("renditions", models.JSONField(blank=True, default=list, verbose_name="Generated Renditions")),
                ("processing_started_at", models.DateTimeField(blank=True, null=True)),
                ("processing_completed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("lesson", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="video_assets",
                    to="courses.lesson",
                )),
                ("uploader", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="uploaded_video_assets",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "verbose_name": "Video Asset",
                "verbose_name_plural": "Video Assets",
                "db_table": "video_assets",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="asset_status_created_idx"),
                    models.Index(fields=["lesson", "status"], name="asset_lesson_status_idx"),
                    models.Index(fields=["content_hash"], name="asset_content_hash_idx"),
                ],
            },
        ),
    ]
