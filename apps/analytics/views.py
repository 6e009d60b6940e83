"""
Analytics views for EduStream Backend
"""

from drf_spectacular.utils import extend_schema
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import InvalidInput
from services.analytics_engine import analytics_engine
from shared.permissions import IsPlatformAdmin, IsTeacherOrAdmin

from .serializers import (
    BulkLessonAnalyticsSerializer,
    ClearCacheSerializer,
    RecordViewSerializer,
    ViewSessionSerializer,
)


def _int_param(request, name, default, minimum=1, maximum=1000):
    raw = request.query_params.get(name)
    if raw in (None, ''):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise InvalidInput(f"{name} must be an integer")
    if value < minimum or value > maximum:
        raise InvalidInput(f"{name} must be between {minimum} and {maximum}")
    return value


class RecordViewView(APIView):
    """Record a playback session for the current user"""

    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(summary="Record view session", request=RecordViewSerializer)
    def post(self, request):
        serializer = RecordViewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        session = dict(serializer.validated_data)
        session['user_id'] = request.user.id
        view = analytics_engine.record_view(session)
        return Response(
            {'success': True, 'data': ViewSessionSerializer(view).data},
            status=status.HTTP_201_CREATED,
        )


class LessonAnalyticsView(APIView):
    permission_classes = [IsTeacherOrAdmin]

    @extend_schema(summary="Lesson analytics")
    def get(self, request, lesson_id):
        timeframe = request.query_params.get('timeframe', '7:days')
        force_refresh = request.query_params.get('refresh', '').lower() in ('1', 'true')
        data = analytics_engine.lesson_analytics(lesson_id, timeframe, force_refresh=force_refresh)
        return Response({'success': True, 'data': data})


class LessonHeatmapView(APIView):
    permission_classes = [IsTeacherOrAdmin]

    @extend_schema(summary="Lesson playback heatmap")
    def get(self, request, lesson_id):
        segments = _int_param(request, 'segments', 100)
        return Response({'success': True, 'data': analytics_engine.lesson_heatmap(lesson_id, segments)})


class EngagementHeatmapView(APIView):
    permission_classes = [IsTeacherOrAdmin]

    @extend_schema(summary="Lesson engagement heatmap")
    def get(self, request, lesson_id):
        segments = _int_param(request, 'segments', 20)
        return Response({'success': True, 'data': analytics_engine.engagement_heatmap(lesson_id, segments)})


class BulkLessonAnalyticsView(APIView):
    permission_classes = [IsTeacherOrAdmin]

    @extend_schema(summary="Bulk lesson analytics", request=BulkLessonAnalyticsSerializer)
    def post(self, request):
        serializer = BulkLessonAnalyticsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = analytics_engine.bulk_lesson_analytics(
            serializer.validated_data['lesson_ids'],
            serializer.validated_data['timeframe'],
        )
        return Response({'success': True, 'data': data})


class CourseAnalyticsView(APIView):
    permission_classes = [IsTeacherOrAdmin]

    @extend_schema(summary="Course analytics")
    def get(self, request, course_id):
        return Response({'success': True, 'data': analytics_engine.course_analytics(course_id)})


class TeacherDashboardView(APIView):
    """Dashboard across the current teacher's courses"""

    permission_classes = [IsTeacherOrAdmin]

    @extend_schema(summary="Teacher analytics dashboard")
    def get(self, request):
        limit = _int_param(request, 'limit', 10, maximum=100)
        return Response({'success': True, 'data': analytics_engine.teacher_dashboard(request.user.id, limit)})


class PlatformAnalyticsView(APIView):
    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="Platform analytics")
    def get(self, request):
        days = _int_param(request, 'days', 30, maximum=365)
        return Response({'success': True, 'data': analytics_engine.platform_analytics(days)})


class ClearAnalyticsCacheView(APIView):
    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="Clear analytics cache", request=ClearCacheSerializer)
    def post(self, request):
        serializer = ClearCacheSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        lesson_id = serializer.validated_data.get('lesson_id')
        removed = analytics_engine.clear_cache(str(lesson_id) if lesson_id else None)
        return Response({'success': True, 'data': {'removed': removed}})
