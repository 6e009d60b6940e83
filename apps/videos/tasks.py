"""
Video lifecycle tasks for EduStream Backend
"""

import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

from core.exceptions import EduStreamBaseException, TranscoderFailed
from services import ingest_pipeline, reconciliation
from services.migration_engine import migration_engine

from .models import VideoAsset

logger = logging.getLogger(__name__)

STUCK_PROCESSING_AFTER = timedelta(hours=2)


@shared_task
def process_video_upload_task(asset_id):
    """Transcode an uploaded original to HLS"""
    try:
        return ingest_pipeline.process_video_upload(asset_id)
    except EduStreamBaseException as e:
        logger.error(f"Error processing video asset {asset_id}: {str(e)}")
        return {'success': False, 'asset_id': str(asset_id), 'error': str(e)}


@shared_task
def sync_managed_statuses_task(batch_size=None):
    """Advance managed uploads and assets from the provider's state"""
    result = reconciliation.sync_managed_statuses(batch_size=batch_size)
    logger.info(f"Managed status sync finished: {result.get('synced_count', 0)} lessons checked")
    return result


@shared_task
def migrate_batch_task(lesson_ids, batch_size=3, keep_self_backup=True, retry_attempts=2):
    """Migrate a batch of self-hosted lessons to the managed provider"""
    return migration_engine.migrate_batch(
        lesson_ids,
        batch_size=batch_size,
        keep_self_backup=keep_self_backup,
        retry_attempts=retry_attempts,
    )


@shared_task
def verify_migration_task(lesson_id):
    """Wait for a migrated asset to settle and record its final state"""
    try:
        return migration_engine.verify_migration(lesson_id, wait=True)
    except EduStreamBaseException as e:
        logger.error(f"Error verifying migration of lesson {lesson_id}: {str(e)}")
        return {'verified': False, 'lesson_id': str(lesson_id), 'error': str(e)}


@shared_task
def recover_managed_asset_task(lesson_id):
    """Classify a managed asset failure and retry recoverable ones"""
    try:
        return reconciliation.handle_asset_error(lesson_id, attempt_recovery=True)
    except EduStreamBaseException as e:
        logger.error(f"Error recovering managed asset for lesson {lesson_id}: {str(e)}")
        return {'lesson_id': str(lesson_id), 'requires_action': True, 'error': str(e)}


@shared_task
def retry_failed_processing_task():
    """Requeue retries whose scheduled run was lost and fail assets stuck in processing"""
    now = timezone.now()
    requeued = 0
    timed_out = 0

    for asset in VideoAsset.objects.filter(status=VideoAsset.STATUS_RETRYING):
        due_at = asset.updated_at + timedelta(seconds=(2 ** asset.processing_attempts) * 60)
        if due_at <= now - timedelta(minutes=5):
            process_video_upload_task.delay(str(asset.id))
            requeued += 1

    stuck = VideoAsset.objects.filter(
        status=VideoAsset.STATUS_PROCESSING,
        processing_started_at__lt=now - STUCK_PROCESSING_AFTER,
    )
    for asset in stuck:
        ingest_pipeline.handle_processing_failure(asset.id, TranscoderFailed("Processing timed out"))
        timed_out += 1

    logger.info(f"Processing sweep: {requeued} retries requeued, {timed_out} stuck assets failed")
    return {'requeued': requeued, 'timed_out': timed_out}
