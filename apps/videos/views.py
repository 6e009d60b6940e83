"""
Video views for EduStream Backend
"""

import logging

from django.conf import settings
from django.db.models import Q
from drf_spectacular.utils import extend_schema
from rest_framework import permissions, status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.courses.models import Lesson
from core.exceptions import NotFound
from services import access_guard, ingest_pipeline, provider_resolver, reconciliation, video_store
from services.migration_engine import migration_engine
from services.object_store import get_object_store
from services.provider_client import get_provider_client
from shared.permissions import IsPlatformAdmin, IsTeacherOrAdmin

from .serializers import (
    ManagedUploadSerializer,
    MigrateLessonSerializer,
    MigrationBatchSerializer,
    MigrationCandidatesQuerySerializer,
    VerifyMigrationSerializer,
    VideoUploadSerializer,
)
from .tasks import migrate_batch_task, recover_managed_asset_task, verify_migration_task

logger = logging.getLogger(__name__)

DOWNLOAD_URL_TTL = 3600
STREAM_URL_TTL = 3600


def build_playback_info(lesson):
    """Playback descriptor with live URL signing and token issuance"""
    store = get_object_store()
    client = get_provider_client()
    return provider_resolver.get_playback_info(
        lesson,
        url_signer=lambda key: store.signed_stream_url(key, ttl_seconds=STREAM_URL_TTL),
        token_issuer=client.generate_playback_token,
        playback_policy=getattr(settings, 'VIDEO_PROVIDER_PLAYBACK_POLICY', 'signed'),
        thumbnail_signer=lambda playback_id: client.thumbnail_url(playback_id, signed=True),
    )


class LessonVideoUploadView(APIView):
    """Upload an original video for a lesson"""

    permission_classes = [IsTeacherOrAdmin]
    parser_classes = [MultiPartParser, FormParser]

    @extend_schema(summary="Upload lesson video", request=VideoUploadSerializer)
    def post(self, request, lesson_id):
        serializer = VideoUploadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        video = serializer.validated_data['video']

        result = ingest_pipeline.upload_video(
            video,
            video.name,
            lesson_id,
            request.user.id,
            enable_transcoding=serializer.validated_data['enable_transcoding'],
        )
        return Response({'success': True, 'data': result}, status=status.HTTP_201_CREATED)


class ManagedUploadView(APIView):
    """Create a direct upload URL on the managed provider"""

    permission_classes = [IsTeacherOrAdmin]

    @extend_schema(summary="Create managed direct upload", request=ManagedUploadSerializer)
    def post(self, request, lesson_id):
        serializer = ManagedUploadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ingest_pipeline.upload_via_managed(
            lesson_id,
            request.user.id,
            cors_origin=serializer.validated_data['cors_origin'],
            playback_policy=serializer.validated_data.get('playback_policy'),
        )
        return Response({'success': True, 'data': result}, status=status.HTTP_201_CREATED)


class LessonVideoDeleteView(APIView):
    """Delete every stored copy of a lesson's video"""

    permission_classes = [IsTeacherOrAdmin]

    @extend_schema(summary="Delete lesson video")
    def delete(self, request, lesson_id):
        result = ingest_pipeline.delete_video(lesson_id, request.user.id)
        return Response({'success': True, 'data': result})


class LessonPlaybackView(APIView):
    """Playback descriptor for a lesson the caller may watch"""

    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(summary="Get lesson playback info")
    def get(self, request, lesson_id):
        lesson = video_store.get_lesson(lesson_id)
        access_guard.require_access(request.user, lesson, access_guard.ACTION_PLAYBACK, request)
        return Response({'success': True, 'data': build_playback_info(lesson)})


class LessonDownloadView(APIView):
    """Time-limited download URL for a lesson's original upload"""

    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(summary="Get lesson download URL")
    def get(self, request, lesson_id):
        lesson = video_store.get_lesson(lesson_id)
        access_guard.require_access(request.user, lesson, access_guard.ACTION_DOWNLOAD, request)
        if not lesson.object_key:
            raise NotFound("No downloadable file for this lesson")

        url = get_object_store().signed_stream_url(lesson.object_key, ttl_seconds=DOWNLOAD_URL_TTL)
        return Response({
            'success': True,
            'data': {'download_url': url, 'expires_in': DOWNLOAD_URL_TTL},
        })


class ProcessingStatusView(APIView):
    """Processing state of a lesson's latest upload"""

    permission_classes = [IsTeacherOrAdmin]

    @extend_schema(summary="Get video processing status")
    def get(self, request, lesson_id):
        result = ingest_pipeline.get_processing_status(lesson_id, request.user.id)
        return Response({'success': True, 'data': result})


class AssetRetryView(APIView):
    """Requeue processing of a failed asset"""

    permission_classes = [IsTeacherOrAdmin]

    @extend_schema(summary="Retry failed video processing")
    def post(self, request, asset_id):
        result = ingest_pipeline.retry_failed_processing(asset_id, request.user.id)
        return Response({'success': True, 'data': result}, status=status.HTTP_202_ACCEPTED)


@api_view(['POST'])
@authentication_classes([])
@permission_classes([permissions.AllowAny])
def provider_webhook(request):
    """Handle managed provider webhooks"""
    payload = request.body
    sig_header = request.META.get('HTTP_MUX_SIGNATURE', '')

    result = reconciliation.handle_webhook(payload, sig_header)
    return Response(result)


class MigrationBatchView(APIView):
    """Migrate many lessons to the managed provider"""

    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="Start batch migration", request=MigrationBatchSerializer)
    def post(self, request):
        serializer = MigrationBatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        lesson_ids = [str(lesson_id) for lesson_id in data['lesson_ids']]

        if data['run_async'] and lesson_ids:
            task = migrate_batch_task.delay(
                lesson_ids,
                batch_size=data['batch_size'],
                keep_self_backup=data['keep_self_backup'],
                retry_attempts=data['retry_attempts'],
            )
            return Response(
                {'success': True, 'data': {'task_id': task.id, 'total': len(lesson_ids)}},
                status=status.HTTP_202_ACCEPTED,
            )

        result = migration_engine.migrate_batch(
            lesson_ids,
            batch_size=data['batch_size'],
            keep_self_backup=data['keep_self_backup'],
            retry_attempts=data['retry_attempts'],
        )
        return Response({'success': True, 'data': result})


class MigrateLessonView(APIView):
    """Migrate one lesson to the managed provider"""

    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="Migrate lesson", request=MigrateLessonSerializer)
    def post(self, request, lesson_id):
        serializer = MigrateLessonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = migration_engine.migrate_single_video(
            lesson_id,
            keep_self_backup=serializer.validated_data['keep_self_backup'],
            retry_attempts=serializer.validated_data['retry_attempts'],
        )
        response_status = status.HTTP_200_OK if result['success'] else status.HTTP_502_BAD_GATEWAY
        return Response({'success': result['success'], 'data': result}, status=response_status)


class VerifyMigrationView(APIView):
    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="Verify lesson migration", request=VerifyMigrationSerializer)
    def post(self, request, lesson_id):
        serializer = VerifyMigrationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        if serializer.validated_data['wait']:
            video_store.get_lesson(lesson_id)
            task = verify_migration_task.delay(str(lesson_id))
            return Response(
                {'success': True, 'data': {'task_id': task.id, 'lesson_id': str(lesson_id)}},
                status=status.HTTP_202_ACCEPTED,
            )

        return Response({'success': True, 'data': migration_engine.verify_migration(lesson_id)})


class RollbackMigrationView(APIView):
    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="Roll back lesson migration")
    def post(self, request, lesson_id):
        return Response({'success': True, 'data': migration_engine.rollback_migration(lesson_id)})


class MigrationEligibilityView(APIView):
    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="Check lesson migration eligibility")
    def get(self, request, lesson_id):
        lesson = video_store.get_lesson(lesson_id)
        data = provider_resolver.check_migration_eligibility(lesson)
        data['video'] = video_store.get_lesson_video_fields(lesson_id)
        return Response({'success': True, 'data': data})


class MigrationCandidatesView(APIView):
    """Lessons still served from self-hosted storage"""

    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="List migration candidates", parameters=[MigrationCandidatesQuerySerializer])
    def get(self, request):
        query = MigrationCandidatesQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data

        filters = {}
        if params.get('course_id'):
            filters['course_id'] = params['course_id']
        page = video_store.list_lessons_on_self(filters, page=params['page'], page_size=params['page_size'])

        results = []
        for lesson in page['results']:
            eligibility = provider_resolver.check_migration_eligibility(lesson)
            results.append({
                'lesson_id': str(lesson.id),
                'course_id': str(lesson.course_id),
                'title': lesson.title,
                'can_migrate': eligibility['canMigrate'],
                'reason': eligibility['reason'],
            })

        return Response({'success': True, 'data': {**page, 'results': results}})


class ManagedRecoveryView(APIView):
    """Queue a severity check and recovery attempt for an errored managed asset"""

    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="Recover errored managed asset")
    def post(self, request, lesson_id):
        lesson = video_store.get_lesson(lesson_id)
        if not lesson.managed_asset_id:
            raise NotFound("Lesson has no managed asset")

        task = recover_managed_asset_task.delay(str(lesson.id))
        return Response(
            {'success': True, 'data': {'task_id': task.id, 'lesson_id': str(lesson.id)}},
            status=status.HTTP_202_ACCEPTED,
        )


class MigrationStatusView(APIView):
    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="Platform migration status")
    def get(self, request):
        return Response({'success': True, 'data': migration_engine.get_migration_status()})


class ProviderStatisticsView(APIView):
    """Provider distribution across lessons with video"""

    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="Video provider statistics")
    def get(self, request):
        lessons = Lesson.objects.filter(
            ~Q(video_provider=Lesson.PROVIDER_NONE) | ~Q(video_url='') | ~Q(object_key='')
        ).only(
            'id', 'video_provider', 'video_url', 'object_key', 'hls_url',
            'managed_upload_id', 'managed_asset_id', 'managed_playback_id', 'managed_status',
        )
        stats = provider_resolver.get_provider_statistics(lessons.iterator())
        stats['provider'] = get_provider_client().get_config()
        return Response({'success': True, 'data': stats})
