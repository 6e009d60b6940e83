"""
Playback provider resolution for EduStream Backend

Every lesson resolves to exactly one of ``managed``, ``self`` or ``none``.
The functions here only read the lesson they are given; URL signing and
token issuance are injected by the caller.
"""

import logging

from services.provider_client import IMAGE_BASE_URL

logger = logging.getLogger(__name__)

PROVIDER_MANAGED = 'managed'
PROVIDER_SELF = 'self'
PROVIDER_NONE = 'none'

HLS_MARKERS = ('.m3u8', '/hls/')
SELF_FIELDS = ('video_url', 'object_key', 'hls_url')
IN_FLIGHT_STATUSES = ('uploading', 'preparing', 'processing')


def _present(value):
    return bool(value and str(value).strip())


def _has_self_fields(lesson):
    return any(_present(getattr(lesson, field, None)) for field in SELF_FIELDS)


def _is_hls(url):
    return _present(url) and any(marker in url for marker in HLS_MARKERS)


def redact_error(error):
    """Short, caller-safe summary of a provider error payload"""
    if not error:
        return 'Video processing failed'
    if isinstance(error, dict):
        messages = error.get('messages') or []
        if messages:
            return str(messages[0])[:200]
        return str(error.get('message') or error.get('type') or 'Video processing failed')[:200]
    return str(error)[:200]


def resolve_provider(lesson):
    """Pick the provider that serves a lesson, in strict priority order"""
    if _present(lesson.managed_playback_id):
        return PROVIDER_MANAGED
    if _present(lesson.managed_asset_id) and lesson.managed_status == 'ready':
        return PROVIDER_MANAGED
    if lesson.video_provider == PROVIDER_MANAGED and _present(lesson.managed_asset_id):
        return PROVIDER_MANAGED
    if lesson.video_provider == PROVIDER_SELF and _has_self_fields(lesson):
        return PROVIDER_SELF
    if _has_self_fields(lesson):
        return PROVIDER_SELF
    return PROVIDER_NONE


def _descriptor(provider, has_video, status, playback_url=None, thumbnail_url=None, duration=None, metadata=None):
    return {
        'provider': provider,
        'hasVideo': has_video,
        'status': status,
        'playbackUrl': playback_url,
        'thumbnailUrl': thumbnail_url,
        'duration': duration,
        'metadata': metadata or {},
    }


def public_thumbnail_url(playback_id):
    return f"{IMAGE_BASE_URL}/{playback_id}/thumbnail.jpg?width=640&height=360&time=0"


def _managed_playback(lesson, token_issuer, playback_policy, thumbnail_signer):
    status = lesson.managed_status or 'preparing'
    playback_id = lesson.managed_playback_id or None
    duration = lesson.duration_seconds or None
    metadata = {
        'assetId': lesson.managed_asset_id or None,
        'playbackId': playback_id,
        'uploadId': lesson.managed_upload_id or None,
        'supportsAdaptiveStreaming': True,
        'format': 'hls',
    }

    if status == 'errored':
        metadata['error'] = redact_error(lesson.managed_error)
        return _descriptor(PROVIDER_MANAGED, False, 'error', duration=duration, metadata=metadata)

    if status != 'ready' or not playback_id:
        metadata['message'] = 'Video is being processed'
        return _descriptor(PROVIDER_MANAGED, True, status, duration=duration, metadata=metadata)

    thumbnail = public_thumbnail_url(playback_id)
    if playback_policy == 'signed':
        if token_issuer is not None:
            metadata['playbackToken'] = token_issuer(playback_id)
        if thumbnail_signer is not None:
            try:
                thumbnail = thumbnail_signer(playback_id)
            except Exception as e:
                logger.warning(f"Falling back to public thumbnail for {playback_id}: {str(e)}")

    return _descriptor(
        PROVIDER_MANAGED, True, 'ready',
        playback_url=playback_id,
        thumbnail_url=thumbnail,
        duration=duration,
        metadata=metadata,
    )


def _self_playback(lesson, url_signer):
    video_url = lesson.video_url or None
    hls_url = lesson.hls_url or None
    object_key = lesson.object_key or None
    warning = None

    if _is_hls(video_url):
        playback_url, video_format = video_url, 'hls'
    elif _present(hls_url):
        playback_url, video_format = hls_url, 'hls'
    elif _present(object_key) and url_signer is not None:
        playback_url = url_signer(object_key)
        video_format = 'webm' if object_key.lower().endswith('.webm') else 'mp4'
        warning = 'Adaptive streaming unavailable, serving the original upload'
    else:
        playback_url, video_format = video_url, 'mp4'

    adaptive = video_format == 'hls'
    metadata = {
        'object_key': object_key,
        'video_url': video_url,
        'hls_url': hls_url,
        'supportsAdaptiveStreaming': adaptive,
        'format': video_format,
    }
    if warning:
        metadata['warning'] = warning

    return _descriptor(
        PROVIDER_SELF, True, 'ready',
        playback_url=playback_url,
        thumbnail_url=lesson.thumbnail_url or None,
        duration=lesson.duration_seconds or None,
        metadata=metadata,
    )


def get_playback_info(lesson, *, url_signer=None, token_issuer=None, playback_policy='public',
                      thumbnail_signer=None):
    """Unified playback descriptor for a lesson; never raises"""
    provider = PROVIDER_NONE
    try:
        provider = resolve_provider(lesson)
        if provider == PROVIDER_MANAGED:
            return _managed_playback(lesson, token_issuer, playback_policy, thumbnail_signer)
        if provider == PROVIDER_SELF:
            return _self_playback(lesson, url_signer)
        return _descriptor(
            PROVIDER_NONE, False, 'no_video',
            metadata={'message': 'No video uploaded for this lesson'},
        )
    except Exception as e:
        logger.error(f"Failed to build playback info for lesson {getattr(lesson, 'id', None)}: {str(e)}")
        return _descriptor(provider, False, 'error', metadata={'error': redact_error(str(e))})


def get_bulk_playback_info(lessons, **kwargs):
    return {str(lesson.id): get_playback_info(lesson, **kwargs) for lesson in lessons}


def check_migration_eligibility(lesson):
    """Whether a lesson can be moved from self-hosted storage to the managed provider"""
    provider = resolve_provider(lesson)
    if provider == PROVIDER_MANAGED:
        return {'canMigrate': False, 'reason': 'Lesson already uses the managed provider', 'currentProvider': provider}
    if provider == PROVIDER_NONE:
        return {'canMigrate': False, 'reason': 'No video to migrate', 'currentProvider': provider}
    if _present(lesson.managed_upload_id) and lesson.managed_status in IN_FLIGHT_STATUSES:
        return {'canMigrate': False, 'reason': 'Migration already in progress', 'currentProvider': provider}
    return {'canMigrate': True, 'reason': 'Eligible for migration', 'currentProvider': provider}


def get_provider_statistics(lessons):
    stats = {
        'total': 0,
        'managed': 0,
        'self': 0,
        'none': 0,
        'managedReady': 0,
        'managedProcessing': 0,
        'managedErrored': 0,
    }
    for lesson in lessons:
        stats['total'] += 1
        stats[resolve_provider(lesson)] += 1
        if lesson.managed_status == 'ready':
            stats['managedReady'] += 1
        elif lesson.managed_status in IN_FLIGHT_STATUSES:
            stats['managedProcessing'] += 1
        elif lesson.managed_status == 'errored':
            stats['managedErrored'] += 1
    return stats
