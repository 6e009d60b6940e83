# Generated manually on 2026-10-19 09:00

import django.db.models.deletion
import django.utils.timezone
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
            name="ViewSession",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("external_view_id", models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ("watch_time_seconds", models.FloatField(default=0, verbose_name="Watch Time (seconds)")),
                ("video_duration_seconds", models.FloatField(default=0, verbose_name="Video Duration (seconds)")),
                ("completion_percentage", models.FloatField(default=0, verbose_name="Completion %")),
                ("playback_progress", models.FloatField(default=0, verbose_name="Furthest Position %")),
                ("session_completed", models.BooleanField(default=False)),
                ("device_type", models.CharField(blank=True, max_length=50, null=True)),
                ("browser", models.CharField(blank=True, max_length=50, null=True)),
                ("os", models.CharField(blank=True, max_length=50, null=True)),
                ("country", models.CharField(blank=True, max_length=2, null=True)),
                ("rebuffer_count", models.PositiveIntegerField(default=0)),
                ("rebuffer_duration_ms", models.PositiveIntegerField(default=0)),
                ("session_started_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("session_ended_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("lesson", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="view_sessions",
                    to="courses.lesson",
                )),
                ("user", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="view_sessions",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "verbose_name": "View Session",
                "verbose_name_plural": "View Sessions",
                "db_table": "view_sessions",
                "ordering": ["-session_started_at"],
                "indexes": [
                    models.Index(fields=["lesson", "session_started_at"], name="view_lesson_started_idx"),
                    models.Index(fields=["user", "session_started_at"], name="view_user_started_idx"),
                    models.Index(fields=["created_at"], name="view_created_idx"),
                ],
            },
        ),
    ]
