"""
Analytics models for EduStream Backend
"""

import uuid
from django.conf import settings
from django.db import models
from django.utils import timezone

from apps.courses.models import Lesson

COMPLETION_THRESHOLD = 90.0


class ViewSession(models.Model):
    """A single playback session reported by the player or the managed provider"""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    lesson = models.ForeignKey(Lesson, on_delete=models.CASCADE, related_name='view_sessions')
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='view_sessions',
    )
    external_view_id = models.CharField(max_length=255, null=True, blank=True, unique=True)

    # Watch metrics
    watch_time_seconds = models.FloatField(default=0, verbose_name='Watch Time (seconds)')
    video_duration_seconds = models.FloatField(default=0, verbose_name='Video Duration (seconds)')
    completion_percentage = models.FloatField(default=0, verbose_name='Completion %')
    playback_progress = models.FloatField(default=0, verbose_name='Furthest Position %')
    session_completed = models.BooleanField(default=False)

    # Viewer context
    device_type = models.CharField(max_length=50, null=True, blank=True)
    browser = models.CharField(max_length=50, null=True, blank=True)
    os = models.CharField(max_length=50, null=True, blank=True)
    country = models.CharField(max_length=2, null=True, blank=True)

    # Quality of experience
    rebuffer_count = models.PositiveIntegerField(default=0)
    rebuffer_duration_ms = models.PositiveIntegerField(default=0)

    session_started_at = models.DateTimeField(default=timezone.now)
    session_ended_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'view_sessions'
        ordering = ['-session_started_at']
        verbose_name = 'View Session'
        verbose_name_plural = 'View Sessions'
        indexes = [
            models.Index(fields=['lesson', 'session_started_at'], name='view_lesson_started_idx'),
            models.Index(fields=['user', 'session_started_at'], name='view_user_started_idx'),
            models.Index(fields=['created_at'], name='view_created_idx'),
        ]

    def __str__(self):
        return f"View of {self.lesson_id} ({self.completion_percentage:.0f}%)"

    def save(self, *args, **kwargs):
        self.session_completed = self.completion_percentage >= COMPLETION_THRESHOLD
        super().save(*args, **kwargs)
