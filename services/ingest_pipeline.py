"""
Video ingest pipeline for EduStream Backend
Validates uploads, stores originals, drives HLS processing and managed uploads
"""

import hashlib
import logging
import time

from django.conf import settings
from django.db import transaction

from apps.videos.models import VideoAsset
from core.exceptions import (
    ConflictState,
    EduStreamBaseException,
    InvalidContainer,
    InvalidInput,
    TranscoderMissing,
)
from core.utils import format_file_size, get_file_extension, sanitize_filename
from services import transcoder, video_store
from services.object_store import get_object_store
from services.progress_bus import progress_bus
from services.provider_client import get_provider_client

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ('mp4', 'webm', 'mov', 'avi', 'mpeg', 'mkv', 'wmv')

CONTENT_TYPES = {
    'mp4': 'video/mp4',
    'webm': 'video/webm',
    'mov': 'video/quicktime',
    'avi': 'video/x-msvideo',
    'mpeg': 'video/mpeg',
    'mkv': 'video/x-matroska',
    'wmv': 'video/x-ms-wmv',
}

# Standard EBML header followed by the variants written by browser MediaRecorder
EBML_SIGNATURES = (
    bytes.fromhex('1A45DFA3'),
    bytes.fromhex('43C38203'),
    bytes.fromhex('43B67501'),
    bytes.fromhex('42828477'),
    bytes.fromhex('42868101'),
)

HEADER_BYTES = 100


def _max_file_size():
    return getattr(settings, 'MAX_VIDEO_FILE_SIZE', 2 * 1024 * 1024 * 1024)


def _max_retries():
    return getattr(settings, 'VIDEO_PROCESSING_MAX_RETRIES', 3)


def detect_container(header):
    """Container family recognised from the leading bytes, or None"""
    header = bytes(header or b'')

    if len(header) >= 8:
        if header[4:8] == b'ftyp':
            return 'mp4'
        if header[0:4] in (b'moof', b'mdat') or header[4:8] in (b'moof', b'mdat'):
            return 'mp4'

    if len(header) >= 4:
        if header.startswith(EBML_SIGNATURES):
            return 'matroska'
        if header[0:4] == b'RIFF':
            return 'avi'

    if len(header) >= 20:
        text = header[:HEADER_BYTES].decode('ascii', errors='ignore').lower()
        if 'webm' in text or 'matroska' in text:
            return 'matroska'

    return None


def validate_upload(size, extension, header):
    """Reject uploads that are too large, of an unknown type or mislabelled"""
    max_size = _max_file_size()
    if size <= 0:
        raise InvalidInput("Uploaded file is empty")
    if size > max_size:
        raise InvalidInput(f"File exceeds the maximum size of {format_file_size(max_size)}", details={'size': size})
    if extension not in ALLOWED_EXTENSIONS:
        raise InvalidInput(f"Unsupported file type: .{extension}" if extension else "File has no extension")

    detected = detect_container(header)
    if extension in ('mp4', 'mov') and detected != 'mp4':
        raise InvalidContainer(f"File content is not a valid {extension} container")
    if extension in ('webm', 'mkv') and detected != 'matroska':
        raise InvalidContainer(f"File content is not a valid {extension} container")
    if extension == 'avi' and detected != 'avi':
        raise InvalidContainer("File content is not a valid avi container")


def build_object_key(lesson_id, filename):
    timestamp_ms = int(time.time() * 1000)
    return f"originals/{lesson_id}-{timestamp_ms}-{sanitize_filename(filename)}"


def _size_of(data):
    if isinstance(data, (bytes, bytearray)):
        return len(data)
    size = getattr(data, 'size', None)
    if size is not None:
        return size
    position = data.tell()
    data.seek(0, 2)
    size = data.tell()
    data.seek(position)
    return size


def _read_header(data):
    if isinstance(data, (bytes, bytearray)):
        return bytes(data[:HEADER_BYTES])
    data.seek(0)
    header = data.read(HEADER_BYTES)
    data.seek(0)
    return header


def _content_hash(data):
    md5 = hashlib.md5()
    if isinstance(data, (bytes, bytearray)):
        md5.update(data)
        return md5.hexdigest()

    data.seek(0)
    for chunk in iter(lambda: data.read(1024 * 1024), b''):
        md5.update(chunk)
    data.seek(0)
    return md5.hexdigest()


def _enqueue_processing(asset_id, countdown=None):
    from apps.videos.tasks import process_video_upload_task

    if countdown:
        process_video_upload_task.apply_async(args=[str(asset_id)], countdown=countdown)
    else:
        process_video_upload_task.delay(str(asset_id))


def upload_video(data, filename, lesson_id, caller_id, content_type=None, enable_transcoding=True, store=None):
    """
    Store an original upload for a lesson the caller owns.

    Transcoding is queued once the surrounding transaction commits.
    """
    extension = get_file_extension(filename)
    size = _size_of(data)
    validate_upload(size, extension, _read_header(data))

    content_type = content_type or CONTENT_TYPES.get(extension, 'application/octet-stream')
    store = store or get_object_store()

    with transaction.atomic():
        lesson = video_store.get_owned_lesson(lesson_id, caller_id, lock=True)
        object_key = build_object_key(lesson.id, filename)
        content_hash = _content_hash(data)
        storage_url = store.put(object_key, data, content_type)

        asset = video_store.link_asset_to_lesson(lesson.id, {
            'uploader_id': caller_id,
            'object_key': object_key,
            'storage_url': storage_url,
            'file_name': filename,
            'content_type': content_type,
            'size_bytes': size,
            'content_hash': content_hash,
            'status': VideoAsset.STATUS_PROCESSING,
            'processing_attempts': 0,
        })

        def after_commit():
            progress_bus.publish(lesson.id, {'type': 'progress', 'progress': 0, 'currentStep': 'Upload complete'})
            if enable_transcoding:
                _enqueue_processing(asset.id)

        transaction.on_commit(after_commit)

    logger.info(f"Stored upload {object_key} ({size} bytes) for lesson {lesson.id}")
    return {
        'success': True,
        'video_asset_id': str(asset.id),
        'object_key': object_key,
        'video_url': storage_url,
        'size_bytes': size,
        'content_type': content_type,
        'processing_status': asset.status,
        'transcoding_queued': enable_transcoding,
    }


def process_video_upload(asset_id, store=None):
    """Transcode a stored original and promote its asset to ready"""
    asset = video_store.get_asset(asset_id)
    lesson_id = asset.lesson_id

    def publish(progress, step):
        progress_bus.publish(lesson_id, {'type': 'progress', 'progress': progress, 'currentStep': step})

    video_store.update_asset_status(asset.id, VideoAsset.STATUS_PROCESSING)
    publish(10, 'Starting HLS transcoding')

    try:
        publish(30, 'Transcoding video')
        result = transcoder.transcode(asset.object_key, progress_callback=publish, store=store)
    except TranscoderMissing:
        logger.warning(f"FFmpeg not available, serving original upload for asset {asset.id}")
        publish(50, 'FFmpeg not available - using direct video')
        asset = video_store.update_asset_status(
            asset.id,
            VideoAsset.STATUS_READY,
            hls_url=None,
            supports_adaptive_streaming=False,
        )
        progress_bus.publish(lesson_id, {'type': 'complete', 'progress': 100, 'videoUrl': asset.storage_url})
        return {'success': True, 'asset_id': str(asset.id), 'hls_url': None, 'degraded': True}
    except InvalidContainer as e:
        logger.error(f"Asset {asset.id} is not a readable video: {str(e)}")
        video_store.update_asset_status(asset.id, VideoAsset.STATUS_FAILED, processing_error=str(e))
        progress_bus.publish(lesson_id, {'type': 'failed', 'error': str(e)})
        return {'success': False, 'asset_id': str(asset.id), 'status': VideoAsset.STATUS_FAILED, 'error': str(e)}
    except EduStreamBaseException as e:
        return handle_processing_failure(asset.id, e)

    publish(60, 'HLS transcoding complete')
    publish(70, 'Finalizing video')

    asset = video_store.update_asset_status(
        asset.id,
        VideoAsset.STATUS_READY,
        hls_url=result['master_url'],
        supports_adaptive_streaming=True,
        renditions=result['renditions'],
        processing_error=None,
    )
    lesson_fields = {'video_url': result['master_url'], 'hls_url': result['master_url']}
    if result.get('duration'):
        lesson_fields['duration_seconds'] = result['duration']

    lesson = video_store.get_lesson(lesson_id)
    if lesson.video_asset_id == asset.id:
        video_store.update_lesson_video_fields(lesson_id, lesson_fields)

    progress_bus.publish(lesson_id, {'type': 'complete', 'progress': 100, 'videoUrl': result['master_url']})
    logger.info(f"Asset {asset.id} ready with HLS master {result['master_key']}")
    return {'success': True, 'asset_id': str(asset.id), 'hls_url': result['master_url'], 'degraded': False}


def handle_processing_failure(asset_id, error):
    """Count a failed processing attempt and either schedule a retry or give up"""
    asset = video_store.get_asset(asset_id)
    attempts = min(asset.processing_attempts + 1, _max_retries())

    if attempts < _max_retries():
        video_store.update_asset_status(
            asset.id,
            VideoAsset.STATUS_RETRYING,
            processing_attempts=attempts,
            processing_error=str(error),
        )
        countdown = (2 ** attempts) * 60
        logger.warning(f"Processing asset {asset.id} failed (attempt {attempts}), retrying in {countdown}s: {error}")
        transaction.on_commit(lambda: _enqueue_processing(asset.id, countdown=countdown))
        return {'success': False, 'asset_id': str(asset.id), 'status': VideoAsset.STATUS_RETRYING,
                'attempts': attempts, 'error': str(error)}

    message = f"Max retries exceeded: {error}"
    video_store.update_asset_status(
        asset.id,
        VideoAsset.STATUS_FAILED,
        processing_attempts=attempts,
        processing_error=message,
    )
    logger.error(f"Processing asset {asset.id} failed permanently: {error}")
    progress_bus.publish(asset.lesson_id, {'type': 'failed', 'error': message})
    return {'success': False, 'asset_id': str(asset.id), 'status': VideoAsset.STATUS_FAILED,
            'attempts': attempts, 'error': message}


def retry_failed_processing(asset_id, caller_id):
    """Reset a failed asset owned by the caller and queue it again"""
    asset = video_store.get_asset(asset_id)
    video_store.get_owned_lesson(asset.lesson_id, caller_id)

    if asset.status != VideoAsset.STATUS_FAILED:
        raise ConflictState(f"Only failed assets can be retried (current status: {asset.status})")

    asset = video_store.update_asset_status(
        asset.id,
        VideoAsset.STATUS_PROCESSING,
        processing_attempts=0,
        processing_error=None,
    )
    transaction.on_commit(lambda: _enqueue_processing(asset.id))
    logger.info(f"Requeued failed asset {asset.id}")
    return {'success': True, 'asset_id': str(asset.id), 'status': asset.status}


def get_processing_status(lesson_id, caller_id):
    """Processing state of the lesson's most recent asset"""
    lesson = video_store.get_owned_lesson(lesson_id, caller_id)
    asset = lesson.video_assets.order_by('-created_at').first()
    if asset is None:
        return {'lesson_id': str(lesson.id), 'has_asset': False, 'status': None}

    return {
        'lesson_id': str(lesson.id),
        'has_asset': True,
        'asset_id': str(asset.id),
        'status': asset.status,
        'processing_attempts': asset.processing_attempts,
        'processing_error': asset.processing_error,
        'hls_url': asset.hls_url,
        'supports_adaptive_streaming': asset.supports_adaptive_streaming,
        'processing_started_at': asset.processing_started_at,
        'processing_completed_at': asset.processing_completed_at,
    }


def upload_via_managed(lesson_id, caller_id, cors_origin='*', playback_policy=None, client=None):
    """Mint a direct upload URL on the managed provider for a lesson"""
    lesson = video_store.get_owned_lesson(lesson_id, caller_id)
    client = client or get_provider_client()

    upload = client.create_direct_upload(
        cors_origin=cors_origin,
        playback_policy=playback_policy,
        passthrough={'lessonId': str(lesson.id)},
    )
    video_store.start_managed_upload(lesson.id, upload['upload_id'])

    logger.info(f"Created managed upload {upload['upload_id']} for lesson {lesson.id}")
    return {
        'upload_id': upload['upload_id'],
        'upload_url': upload['upload_url'],
        'status': upload['status'],
        'timeout_seconds': upload['timeout_seconds'],
    }


def delete_video(lesson_id, caller_id, store=None, client=None):
    """
    Remove every trace of a lesson's video.

    Provider and storage cleanup are best-effort and reported in the result;
    the lesson fields are always cleared.
    """
    lesson = video_store.get_owned_lesson(lesson_id, caller_id)
    store = store or get_object_store()

    managed_deleted = None
    if lesson.managed_asset_id:
        client = client or get_provider_client()
        try:
            outcome = client.delete_asset(lesson.managed_asset_id)
            managed_deleted = {'success': True, 'already_deleted': outcome['already_deleted']}
        except EduStreamBaseException as e:
            logger.error(f"Failed to delete managed asset {lesson.managed_asset_id}: {str(e)}")
            managed_deleted = {'success': False, 'error': str(e)}

    keys = {asset.object_key for asset in lesson.video_assets.all()}
    if lesson.object_key:
        keys.add(lesson.object_key)

    storage_cleanup = {'deleted': [], 'failed': []}
    for key in sorted(keys):
        for target, action in ((key, store.delete), (transcoder.hls_prefix_for(key), store.delete_prefix)):
            try:
                action(target)
                storage_cleanup['deleted'].append(target)
            except EduStreamBaseException as e:
                logger.warning(f"Could not delete {target}: {str(e)}")
                storage_cleanup['failed'].append({'key': target, 'error': str(e)})

    with transaction.atomic():
        VideoAsset.objects.filter(lesson_id=lesson.id).delete()
        video_store.clear_lesson_video_fields(lesson.id)

    logger.info(f"Deleted video for lesson {lesson.id}")
    return {
        'success': True,
        'lesson_id': str(lesson.id),
        'managed_deleted': managed_deleted,
        'storage_cleanup': storage_cleanup,
    }
