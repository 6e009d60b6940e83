"""
Video persistence service for EduStream Backend
Transactional reads and writes of lesson video fields and video assets
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.paginator import EmptyPage, Paginator
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from apps.courses.models import Lesson
from apps.videos.models import VideoAsset
from core.exceptions import InvalidInput, NotFound

logger = logging.getLogger(__name__)

SELF_VIDEO_FIELDS = ('video_url', 'hls_url', 'object_key', 'video_asset_id')

MANAGED_VIDEO_FIELDS = (
    'managed_upload_id',
    'managed_asset_id',
    'managed_playback_id',
    'managed_status',
    'managed_error',
    'managed_created_at',
    'managed_metadata',
)

MIGRATION_FIELDS = ('migration_attempt_count', 'migration_last_error', 'migration_kept_self_backup')

LESSON_VIDEO_FIELDS = frozenset(
    SELF_VIDEO_FIELDS + MANAGED_VIDEO_FIELDS + MIGRATION_FIELDS
    + ('video_provider', 'thumbnail_url', 'duration_seconds', 'allow_download')
)

ASSET_UPDATE_FIELDS = frozenset({
    'hls_url',
    'storage_url',
    'processing_attempts',
    'processing_error',
    'supports_adaptive_streaming',
    'renditions',
})

# Managed lifecycle ordering; transitions to a lower rank are ignored.
# A playable asset outranks an error report for the same asset.
STATUS_RANK = {
    'uploading': 0,
    'preparing': 1,
    'processing': 2,
    'errored': 3,
    'ready': 4,
}


def _get_lesson(lesson_id, lock=False):
    queryset = Lesson.objects.select_for_update() if lock else Lesson.objects.all()
    try:
        return queryset.get(pk=lesson_id)
    except (Lesson.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound(f"Lesson {lesson_id} not found")


def _get_asset(asset_id, lock=False):
    queryset = VideoAsset.objects.select_for_update() if lock else VideoAsset.objects.all()
    try:
        return queryset.get(pk=asset_id)
    except (VideoAsset.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound(f"Video asset {asset_id} not found")


def get_lesson(lesson_id):
    return _get_lesson(lesson_id)


def get_asset(asset_id):
    return _get_asset(asset_id)


def get_owned_lesson(lesson_id, user_id, lock=False):
    """Lesson whose course was created by ``user_id``; NotFound otherwise"""
    queryset = Lesson.objects.select_related('course')
    if lock:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(pk=lesson_id, course__created_by_id=user_id)
    except (Lesson.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound("Lesson not found or access denied")


def link_asset_to_lesson(lesson_id, asset_fields):
    """Create a VideoAsset and point the lesson at it in one transaction"""
    with transaction.atomic():
        lesson = _get_lesson(lesson_id, lock=True)
        asset = VideoAsset.objects.create(lesson=lesson, **asset_fields)

        lesson.object_key = asset.object_key
        lesson.video_url = asset.storage_url
        lesson.hls_url = ''
        lesson.video_provider = Lesson.PROVIDER_SELF
        lesson.video_asset_id = asset.id
        lesson.save(update_fields=['object_key', 'video_url', 'hls_url', 'video_provider',
                                   'video_asset_id', 'updated_at'])

    logger.info(f"Linked video asset {asset.id} to lesson {lesson_id}")
    return asset


def update_lesson_video_fields(lesson_id, fields):
    """Write whitelisted video fields of a lesson under a row lock"""
    unknown = set(fields) - LESSON_VIDEO_FIELDS
    if unknown:
        raise InvalidInput(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    with transaction.atomic():
        lesson = _get_lesson(lesson_id, lock=True)
        for name, value in fields.items():
            setattr(lesson, name, value)
        lesson.save(update_fields=list(fields) + ['updated_at'])
    return lesson


def get_lesson_video_fields(lesson_id):
    lesson = _get_lesson(lesson_id)
    data = {name: getattr(lesson, name) for name in sorted(LESSON_VIDEO_FIELDS)}
    data.update({
        'id': lesson.id,
        'course_id': lesson.course_id,
        'title': lesson.title,
    })
    return data


def list_lessons_needing_managed_sync(limit=50):
    """Lessons whose managed state may still move forward"""
    no_asset = Q(managed_asset_id='') | Q(managed_asset_id__isnull=True)
    no_playback = Q(managed_playback_id='') | Q(managed_playback_id__isnull=True)
    has_upload = ~Q(managed_upload_id='') & Q(managed_upload_id__isnull=False)
    has_asset = ~Q(managed_asset_id='') & Q(managed_asset_id__isnull=False)

    queryset = Lesson.objects.filter(
        (has_upload & no_asset)
        | (has_asset & no_playback)
        | Q(managed_status__in=['preparing', 'processing'])
    ).exclude(managed_status='errored').order_by('updated_at')
    return list(queryset[:limit])


def list_lessons_on_self(filters=None, page=1, page_size=50):
    """Paginated lessons served from self-hosted storage"""
    filters = filters or {}
    has_self = ~Q(video_url='') | ~Q(object_key='') | ~Q(hls_url='')
    queryset = Lesson.objects.filter(has_self).filter(managed_asset_id='').exclude(
        video_provider=Lesson.PROVIDER_MANAGED, managed_status__in=['preparing', 'processing', 'ready']
    )

    if filters.get('course_id'):
        queryset = queryset.filter(course_id=filters['course_id'])
    if filters.get('lesson_ids'):
        queryset = queryset.filter(id__in=filters['lesson_ids'])

    paginator = Paginator(queryset.order_by('created_at'), page_size)
    try:
        page_obj = paginator.page(page)
        results = list(page_obj.object_list)
    except EmptyPage:
        results = []

    return {
        'results': results,
        'total': paginator.count,
        'page': page,
        'page_size': page_size,
    }


def record_migration_error(lesson_id, error, attempt):
    """Persist the latest migration failure for a lesson"""
    now = timezone.now()
    Lesson.objects.filter(pk=lesson_id).update(
        migration_attempt_count=attempt,
        migration_last_error={
            'message': str(error),
            'kind': getattr(error, 'kind', type(error).__name__),
            'attempt': attempt,
            'recorded_at': now.isoformat(),
        },
        updated_at=now,
    )


def update_asset_status(asset_id, status, **fields):
    """Move a VideoAsset to ``status`` and stamp the processing timestamps"""
    valid_statuses = {choice for choice, _ in VideoAsset.STATUS_CHOICES}
    if status not in valid_statuses:
        raise InvalidInput(f"Unknown asset status: {status}")
    unknown = set(fields) - ASSET_UPDATE_FIELDS
    if unknown:
        raise InvalidInput(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    with transaction.atomic():
        asset = _get_asset(asset_id, lock=True)
        asset.status = status
        update_fields = {'status', 'updated_at'}

        if status == VideoAsset.STATUS_PROCESSING and asset.processing_started_at is None:
            asset.processing_started_at = timezone.now()
            update_fields.add('processing_started_at')
        if status in (VideoAsset.STATUS_READY, VideoAsset.STATUS_FAILED):
            asset.processing_completed_at = timezone.now()
            update_fields.add('processing_completed_at')

        for name, value in fields.items():
            setattr(asset, name, value)
            update_fields.add(name)

        asset.save(update_fields=sorted(update_fields))
    return asset


def clear_lesson_video_fields(lesson_id):
    """Remove every video reference from a lesson"""
    with transaction.atomic():
        lesson = _get_lesson(lesson_id, lock=True)
        _clear_managed(lesson)
        lesson.video_url = ''
        lesson.hls_url = ''
        lesson.object_key = ''
        lesson.video_asset_id = None
        lesson.thumbnail_url = ''
        lesson.video_provider = Lesson.PROVIDER_NONE
        lesson.save()
    return lesson


def _clear_managed(lesson):
    lesson.managed_upload_id = ''
    lesson.managed_asset_id = ''
    lesson.managed_playback_id = ''
    lesson.managed_status = ''
    lesson.managed_error = None
    lesson.managed_created_at = None
    lesson.managed_metadata = {}


def reset_managed_fields(lesson_id, provider=None):
    """
    Clear the managed provider state of a lesson.

    Only deletion, cancellation and rollback use this; the provider falls
    back to self-hosted when self fields remain.
    """
    with transaction.atomic():
        lesson = _get_lesson(lesson_id, lock=True)
        _clear_managed(lesson)
        if provider is None:
            provider = Lesson.PROVIDER_SELF if lesson.has_self_video else Lesson.PROVIDER_NONE
        lesson.video_provider = provider
        lesson.save()
    return lesson


def start_managed_upload(lesson_id, upload_id, extra_fields=None):
    """Point a lesson at a fresh direct upload, forgetting any earlier asset"""
    with transaction.atomic():
        lesson = _get_lesson(lesson_id, lock=True)
        _clear_managed(lesson)
        lesson.managed_upload_id = upload_id
        lesson.managed_status = 'preparing'
        lesson.video_provider = Lesson.PROVIDER_MANAGED
        for name, value in (extra_fields or {}).items():
            if name not in LESSON_VIDEO_FIELDS:
                raise InvalidInput(f"Field cannot be updated: {name}")
            setattr(lesson, name, value)
        lesson.save()
    return lesson


def apply_managed_state(lesson_id, *, status, asset_id=None, playback_id=None, upload_id=None,
                        error=None, duration=None, extra=None):
    """
    Single writer for managed lifecycle transitions.

    Status sync and webhooks both go through here. Regressions and events for
    an asset the lesson no longer points at are ignored, and re-applying the
    current state changes nothing. Returns ``(lesson, changed)``.
    """
    if status not in STATUS_RANK:
        raise InvalidInput(f"Unknown managed status: {status}")

    with transaction.atomic():
        lesson = _get_lesson(lesson_id, lock=True)

        if asset_id and lesson.managed_asset_id and lesson.managed_asset_id != asset_id:
            logger.info(f"Ignoring {status} for stale asset {asset_id} on lesson {lesson_id}")
            return lesson, False

        current = lesson.managed_status
        if current in STATUS_RANK and STATUS_RANK[status] < STATUS_RANK[current]:
            logger.debug(f"Ignoring regression {current} -> {status} on lesson {lesson_id}")
            return lesson, False

        changed = set()

        def _set(name, value):
            if value is not None and getattr(lesson, name) != value:
                setattr(lesson, name, value)
                changed.add(name)

        _set('managed_status', status)
        _set('managed_asset_id', asset_id)
        _set('managed_playback_id', playback_id)
        _set('managed_upload_id', upload_id)

        if asset_id and lesson.managed_created_at is None:
            _set('managed_created_at', timezone.now())
        if duration:
            _set('duration_seconds', float(duration))
        if extra:
            _set('managed_metadata', {**(lesson.managed_metadata or {}), **extra})

        if status == 'ready':
            _set('video_provider', Lesson.PROVIDER_MANAGED)
            if lesson.managed_error is not None:
                lesson.managed_error = None
                changed.add('managed_error')
        elif status == 'errored':
            _set('managed_error', error or {'messages': ['Unknown provider error']})

        if not changed:
            return lesson, False

        lesson.save(update_fields=sorted(changed | {'updated_at'}))

    logger.info(f"Lesson {lesson_id} managed state -> {status} ({', '.join(sorted(changed))})")
    return lesson, True


def find_lesson_for_managed_event(asset_id=None, upload_id=None, lesson_id=None):
    """Locate the lesson a provider event refers to"""
    if asset_id:
        lesson = Lesson.objects.filter(managed_asset_id=asset_id).first()
        if lesson:
            return lesson
    if upload_id:
        lesson = Lesson.objects.filter(managed_upload_id=upload_id).first()
        if lesson:
            return lesson
    if lesson_id:
        try:
            return Lesson.objects.filter(pk=lesson_id).first()
        except (DjangoValidationError, ValueError):
            return None
    return None
