# Generated manually on 2026-10-19 09:00

import django.db.models.deletion
import uuid
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Course",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=200, verbose_name="Title")),
                ("description", models.TextField(blank=True, verbose_name="Description")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("created_by", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="created_courses",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "verbose_name": "Course",
                "verbose_name_plural": "Courses",
                "db_table": "courses",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Lesson",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=200, verbose_name="Title")),
                ("order", models.PositiveIntegerField(default=0, verbose_name="Order")),
                ("status", models.CharField(
                    choices=[("draft", "Draft"), ("published", "Published"), ("archived", "Archived")],
                    default="draft",
                    max_length=20,
                )),
                ("duration_seconds", models.FloatField(default=0, verbose_name="Duration (seconds)")),
                ("video_provider", models.CharField(
                    choices=[
                        ("self", "Self-hosted storage"),
                        ("managed", "Managed video provider"),
                        ("none", "No video"),
                    ],
                    default="none",
                    max_length=20,
                )),
                ("video_url", models.TextField(blank=True, default="", verbose_name="Video URL")),
                ("hls_url", models.TextField(blank=True, default="", verbose_name="HLS Master URL")),
                ("object_key", models.CharField(blank=True, default="", max_length=512, verbose_name="Storage Key")),
                ("video_asset_id", models.UUIDField(blank=True, null=True, verbose_name="Current Video Asset")),
                ("managed_upload_id", models.CharField(blank=True, default="", max_length=255)),
                ("managed_asset_id", models.CharField(blank=True, db_index=True, default="", max_length=255)),
                ("managed_playback_id", models.CharField(blank=True, default="", max_length=255)),
                ("managed_status", models.CharField(
                    blank=True,
                    choices=[
                        ("uploading", "Uploading"),
                        ("preparing", "Preparing"),
                        ("processing", "Processing"),
                        ("ready", "Ready"),
                        ("errored", "Errored"),
                    ],
                    default="",
                    max_length=20,
                )),
                ("managed_error", models.JSONField(blank=True, null=True)),
                ("managed_created_at", models.DateTimeField(blank=True, null=True)),
                ("managed_metadata", models.JSONField(blank=True, default=dict)),
                ("migration_attempt_count", models.PositiveIntegerField(default=0)),
                ("migration_last_error", models.JSONField(blank=True, null=True)),
                ("migration_kept_self_backup", models.BooleanField(default=False)),
                ("thumbnail_url", models.TextField(blank=True, default="", verbose_name="Thumbnail URL")),
                ("allow_download", models.BooleanField(default=False, verbose_name="Allow Download")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("course", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="lessons",
                    to="courses.course",
                )),
            ],
            options={
                "verbose_name": "Lesson",
                "verbose_name_plural": "Lessons",
                "db_table": "lessons",
                "ordering": ["course", "order"],
                "indexes": [
                    models.Index(fields=["video_provider", "managed_status"], name="lesson_provider_status_idx"),
                    models.Index(fields=["managed_upload_id"], name="lesson_upload_id_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Enrollment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("status", models.CharField(
                    choices=[("active", "Active"), ("completed", "Completed"), ("dropped", "Dropped")],
                    default="active",
                    max_length=20,
                )),
                ("enrolled_at", models.DateTimeField(auto_now_add=True)),
                ("course", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="enrollments",
                    to="courses.course",
                )),
                ("user", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="enrollments",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "verbose_name": "Enrollment",
                "verbose_name_plural": "Enrollments",
                "db_table": "enrollments",
                "unique_together": {("user", "course")},
            },
        ),
        migrations.CreateModel(
            name="UserLessonProgress",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("progress", models.FloatField(default=0, verbose_name="Progress %")),
                ("watch_time_seconds", models.FloatField(default=0, verbose_name="Watch Time (seconds)")),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("lesson", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="progress_records",
                    to="courses.lesson",
                )),
                ("user", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="lesson_progress",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "verbose_name": "Lesson Progress",
                "verbose_name_plural": "Lesson Progress",
                "db_table": "user_lesson_progress",
                "unique_together": {("user", "lesson")},
            },
        ),
    ]
