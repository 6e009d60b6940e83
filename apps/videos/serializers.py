"""
Video serializers for EduStream Backend
"""

from rest_framework import serializers

from .models import VideoAsset


class VideoAssetSerializer(serializers.ModelSerializer):
    """Self-hosted video asset"""

    class Meta:
        model = VideoAsset
        fields = [
            'id', 'lesson', 'object_key', 'storage_url', 'hls_url', 'file_name',
            'content_type', 'size_bytes', 'status', 'processing_attempts',
            'processing_error', 'supports_adaptive_streaming', 'renditions',
            'processing_started_at', 'processing_completed_at', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class VideoUploadSerializer(serializers.Serializer):
    """Multipart upload of an original video"""

    video = serializers.FileField()
    enable_transcoding = serializers.BooleanField(default=True)


class ManagedUploadSerializer(serializers.Serializer):
    """Request for a managed provider direct upload URL"""

    cors_origin = serializers.CharField(default='*', max_length=255)
    playback_policy = serializers.ChoiceField(choices=['public', 'signed'], required=False)


class MigrationBatchSerializer(serializers.Serializer):
    """Batch migration request"""

    lesson_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=True, max_length=500)
    batch_size = serializers.IntegerField(default=3, min_value=1, max_value=10)
    keep_self_backup = serializers.BooleanField(default=True)
    retry_attempts = serializers.IntegerField(default=2, min_value=0, max_value=5)
    run_async = serializers.BooleanField(default=True)


class MigrateLessonSerializer(serializers.Serializer):
    """Single lesson migration request"""

    keep_self_backup = serializers.BooleanField(default=True)
    retry_attempts = serializers.IntegerField(default=2, min_value=0, max_value=5)


class MigrationCandidatesQuerySerializer(serializers.Serializer):
    """Filters for lessons still served from self-hosted storage"""

    course_id = serializers.UUIDField(required=False)
    page = serializers.IntegerField(default=1, min_value=1)
    page_size = serializers.IntegerField(default=50, min_value=1, max_value=200)


class VerifyMigrationSerializer(serializers.Serializer):
    """Verify now, or queue a background wait for the asset to settle"""

    wait = serializers.BooleanField(default=False)
