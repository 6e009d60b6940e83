"""
Video models for EduStream Backend
"""

import uuid
from django.conf import settings
from django.db import models

from apps.courses.models import Lesson


class VideoAsset(models.Model):
    """One self-hosted original ingested for a lesson"""

    STATUS_PROCESSING = 'processing'
    STATUS_RETRYING = 'retrying'
    STATUS_READY = 'ready'
    STATUS_FAILED = 'failed'

    STATUS_CHOICES = [
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_RETRYING, 'Retrying'),
        (STATUS_READY, 'Ready'),
        (STATUS_FAILED, 'Failed'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    lesson = models.ForeignKey(Lesson, on_delete=models.CASCADE, related_name='video_assets')
    uploader = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='uploaded_video_assets',
    )

    # Storage information
    object_key = models.CharField(max_length=512, verbose_name='Storage Key')
    storage_url = models.TextField(verbose_name='Storage URL')
    hls_url = models.TextField(null=True, blank=True, verbose_name='HLS Master URL')
    file_name = models.CharField(max_length=255, blank=True, verbose_name='Original File Name')
    content_type = models.CharField(max_length=100, blank=True, verbose_name='Content Type')
    size_bytes = models.BigIntegerField(default=0, verbose_name='File Size (bytes)')
    content_hash = models.CharField(max_length=32, blank=True, verbose_name='MD5 Content Hash')

    # Processing state
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PROCESSING)
    processing_attempts = models.PositiveSmallIntegerField(default=0, verbose_name='Processing Attempts')
    processing_error = models.TextField(null=True, blank=True, verbose_name='Processing Error')
    supports_adaptive_streaming = models.BooleanField(default=False)
    renditions = models.JSONField(default=list, blank=True, verbose_name='Generated Renditions')
    processing_started_at = models.DateTimeField(null=True, blank=True)
    processing_completed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'video_assets'
        ordering = ['-created_at']
        verbose_name = 'Video Asset'
        verbose_name_plural = 'Video Assets'
        indexes = [
            models.Index(fields=['status', 'created_at'], name='asset_status_created_idx'),
            models.Index(fields=['lesson', 'status'], name='asset_lesson_status_idx'),
            models.Index(fields=['content_hash'], name='asset_content_hash_idx'),
        ]

    def __str__(self):
        return f"Asset {self.object_key} ({self.status})"
