"""
Analytics serializers for EduStream Backend
"""

from rest_framework import serializers

from .models import ViewSession


class ViewSessionSerializer(serializers.ModelSerializer):
    """Stored view session"""

    class Meta:
        model = ViewSession
        fields = [
            'id', 'lesson', 'user', 'external_view_id', 'watch_time_seconds',
            'video_duration_seconds', 'completion_percentage', 'playback_progress',
            'session_completed', 'device_type', 'browser', 'os', 'country',
            'rebuffer_count', 'rebuffer_duration_ms', 'session_started_at',
            'session_ended_at', 'created_at',
        ]
        read_only_fields = fields


class RecordViewSerializer(serializers.Serializer):
    """View session reported by the player"""

    lesson_id = serializers.UUIDField()
    external_view_id = serializers.CharField(max_length=255, required=False, allow_blank=True)
    watch_time_seconds = serializers.FloatField(min_value=0, required=False)
    video_duration_seconds = serializers.FloatField(min_value=0, required=False)
    completion_percentage = serializers.FloatField(required=False)
    playback_progress = serializers.FloatField(required=False)
    device_type = serializers.CharField(max_length=50, required=False, allow_blank=True)
    browser = serializers.CharField(max_length=50, required=False, allow_blank=True)
    os = serializers.CharField(max_length=50, required=False, allow_blank=True)
    country = serializers.CharField(max_length=2, required=False, allow_blank=True)
    rebuffer_count = serializers.IntegerField(min_value=0, required=False)
    rebuffer_duration_ms = serializers.IntegerField(min_value=0, required=False)
    session_started_at = serializers.DateTimeField(required=False)
    session_ended_at = serializers.DateTimeField(required=False)


class BulkLessonAnalyticsSerializer(serializers.Serializer):
    lesson_ids = serializers.ListField(child=serializers.UUIDField(), min_length=1, max_length=100)
    timeframe = serializers.CharField(default='7:days')


class ClearCacheSerializer(serializers.Serializer):
    lesson_id = serializers.UUIDField(required=False, allow_null=True)
