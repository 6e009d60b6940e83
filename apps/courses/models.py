"""
Course models for EduStream Backend

Courses, enrollments and lessons are owned by the course catalogue. The video
lifecycle services only read them and write the lesson video fields.
"""

import uuid
from django.conf import settings
from django.db import models


class Course(models.Model):
    """A course authored by a teacher"""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=200, verbose_name='Title')
    description = models.TextField(blank=True, verbose_name='Description')
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='created_courses',
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'courses'
        ordering = ['-created_at']
        verbose_name = 'Course'
        verbose_name_plural = 'Courses'

    def __str__(self):
        return self.title


class Enrollment(models.Model):
    """Student enrollment in a course"""

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('completed', 'Completed'),
        ('dropped', 'Dropped'),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='enrollments')
    course = models.ForeignKey(Course, on_delete=models.CASCADE, related_name='enrollments')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    enrolled_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'enrollments'
        unique_together = [['user', 'course']]
        verbose_name = 'Enrollment'
        verbose_name_plural = 'Enrollments'


class Lesson(models.Model):
    """Course lesson with the video fields managed by the video lifecycle services"""

    PROVIDER_SELF = 'self'
    PROVIDER_MANAGED = 'managed'
    PROVIDER_NONE = 'none'

    PROVIDER_CHOICES = [
        (PROVIDER_SELF, 'Self-hosted storage'),
        (PROVIDER_MANAGED, 'Managed video provider'),
        (PROVIDER_NONE, 'No video'),
    ]

    MANAGED_STATUS_CHOICES = [
        ('uploading', 'Uploading'),
        ('preparing', 'Preparing'),
        ('processing', 'Processing'),
        ('ready', 'Ready'),
        ('errored', 'Errored'),
    ]

    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('published', 'Published'),
        ('archived', 'Archived'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    course = models.ForeignKey(Course, on_delete=models.CASCADE, related_name='lessons')
    title = models.CharField(max_length=200, verbose_name='Title')
    order = models.PositiveIntegerField(default=0, verbose_name='Order')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')
    duration_seconds = models.FloatField(default=0, verbose_name='Duration (seconds)')

    # Provider selection
    video_provider = models.CharField(max_length=20, choices=PROVIDER_CHOICES, default=PROVIDER_NONE)

    # Self-hosted video fields
    video_url = models.TextField(blank=True, default='', verbose_name='Video URL')
    hls_url = models.TextField(blank=True, default='', verbose_name='HLS Master URL')
    object_key = models.CharField(max_length=512, blank=True, default='', verbose_name='Storage Key')
    video_asset_id = models.UUIDField(null=True, blank=True, verbose_name='Current Video Asset')

    # Managed provider fields
    managed_upload_id = models.CharField(max_length=255, blank=True, default='')
    managed_asset_id = models.CharField(max_length=255, blank=True, default='', db_index=True)
    managed_playback_id = models.CharField(max_length=255, blank=True, default='')
    managed_status = models.CharField(max_length=20, choices=MANAGED_STATUS_CHOICES, blank=True, default='')
    managed_error = models.JSONField(null=True, blank=True)
    managed_created_at = models.DateTimeField(null=True, blank=True)
    managed_metadata = models.JSONField(default=dict, blank=True)

    # Migration bookkeeping
    migration_attempt_count = models.PositiveIntegerField(default=0)
    migration_last_error = models.JSONField(null=True, blank=True)
    migration_kept_self_backup = models.BooleanField(default=False)

    thumbnail_url = models.TextField(blank=True, default='', verbose_name='Thumbnail URL')
    allow_download = models.BooleanField(default=False, verbose_name='Allow Download')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'lessons'
        ordering = ['course', 'order']
        verbose_name = 'Lesson'
        verbose_name_plural = 'Lessons'
        indexes = [
            models.Index(fields=['video_provider', 'managed_status'], name='lesson_provider_status_idx'),
            models.Index(fields=['managed_upload_id'], name='lesson_upload_id_idx'),
        ]

    def __str__(self):
        return self.title

    @property
    def has_self_video(self):
        return bool(self.video_url or self.object_key or self.hls_url)


class UserLessonProgress(models.Model):
    """Per-user lesson progress tracked by the player"""

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='lesson_progress')
    lesson = models.ForeignKey(Lesson, on_delete=models.CASCADE, related_name='progress_records')
    progress = models.FloatField(default=0, verbose_name='Progress %')
    watch_time_seconds = models.FloatField(default=0, verbose_name='Watch Time (seconds)')
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'user_lesson_progress'
        unique_together = [['user', 'lesson']]
        verbose_name = 'Lesson Progress'
        verbose_name_plural = 'Lesson Progress'
