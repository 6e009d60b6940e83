"""
Reconciliation jobs for EduStream Backend
Keeps lesson video state consistent with the managed provider through
periodic polling and webhook intake
"""

import json
import logging
import time

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.courses.models import Lesson
from core.exceptions import EduStreamBaseException, InvalidInput, NotFound, PermissionDenied, ProviderUnavailable
from services import video_store
from services.progress_bus import progress_bus
from services.provider_client import ProviderClient, get_provider_client, normalize_asset, parse_passthrough

logger = logging.getLogger(__name__)

FAILED_UPLOAD_STATUSES = ('errored', 'cancelled', 'timed_out')


def _event_name(event_type):
    """Event names are accepted with or without the ``video.`` prefix"""
    event_type = event_type or ''
    return event_type[len('video.'):] if event_type.startswith('video.') else event_type


def _asset_extra(asset):
    return {
        'aspectRatio': asset.get('aspect_ratio'),
        'maxResolution': asset.get('max_stored_resolution'),
        'tracks': asset.get('tracks') or [],
    }


def describe_asset_error(errors):
    """Normalise a provider error payload and classify its severity"""
    if isinstance(errors, dict):
        error_type = errors.get('type') or 'unknown'
        messages = [str(message) for message in (errors.get('messages') or [])]
    elif errors:
        error_type = 'unknown'
        messages = [str(message) for message in (errors if isinstance(errors, (list, tuple)) else [errors])]
    else:
        error_type = 'unknown'
        messages = ['Asset processing failed']

    return {
        'type': error_type,
        'messages': messages,
        'severity': 'critical' if ProviderClient.is_error_critical(errors) else 'warning',
    }


def _schedule_recovery(lesson_id):
    from apps.videos.tasks import recover_managed_asset_task

    transaction.on_commit(lambda: recover_managed_asset_task.delay(str(lesson_id)))


def apply_asset_state(lesson_id, asset, schedule_recovery=True):
    """Write a provider asset snapshot through the managed state mutator"""
    status = asset.get('status')
    playback_ids = asset.get('playback_ids') or []

    if status == 'ready' and playback_ids:
        lesson, changed = video_store.apply_managed_state(
            lesson_id,
            status='ready',
            asset_id=asset.get('asset_id'),
            playback_id=playback_ids[0]['id'],
            duration=asset.get('duration'),
            extra=_asset_extra(asset),
        )
        if changed:
            progress_bus.publish(lesson_id, {
                'type': 'complete',
                'progress': 100,
                'videoUrl': playback_ids[0]['id'],
            })
        return lesson, changed

    if status == 'errored':
        error = describe_asset_error(asset.get('errors'))
        lesson, changed = video_store.apply_managed_state(
            lesson_id,
            status='errored',
            asset_id=asset.get('asset_id'),
            error=error,
        )
        if changed:
            progress_bus.publish(lesson_id, {'type': 'failed', 'error': 'Video processing failed'})
            if schedule_recovery and error['severity'] != 'critical':
                _schedule_recovery(lesson_id)
        return lesson, changed

    # ready without playback ids is still in flight
    pending = status if status in ('preparing', 'processing') else 'processing'
    return video_store.apply_managed_state(lesson_id, status=pending, asset_id=asset.get('asset_id'))


def sync_lesson(lesson, client):
    """Advance one lesson from the provider's view of its upload or asset"""
    action = 'unchanged'

    if lesson.managed_upload_id and not lesson.managed_asset_id:
        upload = client.get_upload(lesson.managed_upload_id)
        if upload.get('asset_id'):
            lesson, changed = video_store.apply_managed_state(
                lesson.id, status='processing', asset_id=upload['asset_id'],
            )
            action = 'asset_linked' if changed else action
        elif upload.get('status') in FAILED_UPLOAD_STATUSES:
            lesson, changed = video_store.apply_managed_state(
                lesson.id,
                status='errored',
                error=upload.get('error') or {'messages': [f"Upload {upload.get('status')}"]},
            )
            if changed:
                progress_bus.publish(lesson.id, {'type': 'failed', 'error': f"Upload {upload.get('status')}"})
            return {'lesson_id': str(lesson.id), 'action': 'upload_failed' if changed else action}

    if lesson.managed_asset_id and (
        not lesson.managed_playback_id or lesson.managed_status in ('preparing', 'processing')
    ):
        asset = client.get_asset(lesson.managed_asset_id)
        lesson, changed = apply_asset_state(lesson.id, asset)
        if changed:
            action = f"status_{lesson.managed_status}"

    return {'lesson_id': str(lesson.id), 'action': action, 'status': lesson.managed_status}


def sync_managed_statuses(batch_size=None, client=None):
    """Poll the provider for every lesson whose managed state may still advance"""
    client = client or get_provider_client()
    if not client.is_configured():
        logger.warning("Skipping managed status sync: video provider is not configured")
        return {'success': False, 'error': 'Video provider is not configured', 'synced_count': 0}

    batch_size = batch_size or getattr(settings, 'STATUS_SYNC_BATCH_SIZE', 50)
    lessons = video_store.list_lessons_needing_managed_sync(limit=batch_size)

    results = []
    success_count = 0
    failed_count = 0
    for lesson in lessons:
        try:
            results.append(sync_lesson(lesson, client))
            success_count += 1
        except EduStreamBaseException as e:
            failed_count += 1
            logger.error(f"Failed to sync lesson {lesson.id}: {str(e)}")
            results.append({'lesson_id': str(lesson.id), 'action': 'error', 'error': str(e)})

    logger.info(f"Managed status sync: {success_count} synced, {failed_count} failed")
    return {
        'success': True,
        'synced_count': len(lessons),
        'success_count': success_count,
        'failed_count': failed_count,
        'lessons': results,
    }


def retry_asset_processing(lesson_id, max_retries=3, client=None, sleep=time.sleep):
    """
    Re-check an errored managed asset with exponential backoff.

    Stops as soon as the provider reports the asset ready or still in flight.
    Each errored poll is written back through the state mutator, so a
    recovered asset replaces the recorded error.
    """
    lesson = video_store.get_lesson(lesson_id)
    if not lesson.managed_asset_id:
        raise NotFound("Lesson has no managed asset")
    client = client or get_provider_client()

    retry_log = []
    last_error = None
    for attempt in range(1, max_retries + 1):
        try:
            asset = client.get_asset(lesson.managed_asset_id)
        except ProviderUnavailable as e:
            last_error = str(e)
            retry_log.append({'attempt': attempt, 'error': last_error, 'at': timezone.now().isoformat()})
            logger.warning(f"Recovery poll {attempt}/{max_retries} for lesson {lesson_id} failed: {last_error}")
        else:
            retry_log.append({'attempt': attempt, 'status': asset['status'], 'at': timezone.now().isoformat()})
            if asset['status'] != 'errored':
                lesson, _ = apply_asset_state(lesson.id, asset, schedule_recovery=False)
                recovered = lesson.managed_status == 'ready'
                return {
                    'success': recovered,
                    'status': lesson.managed_status if recovered else asset['status'],
                    'attempts': attempt,
                    'retry_log': retry_log,
                }
            last_error = asset.get('errors')
            apply_asset_state(lesson.id, asset, schedule_recovery=False)

        if attempt < max_retries:
            sleep(2 ** attempt)

    logger.error(f"Managed asset for lesson {lesson_id} still failing after {max_retries} checks")
    return {
        'success': False,
        'status': 'errored',
        'attempts': max_retries,
        'retry_log': retry_log,
        'error': f"Asset processing failed after {max_retries} attempts",
        'last_error': last_error,
    }


def handle_asset_error(lesson_id, attempt_recovery=False, client=None, sleep=time.sleep):
    """Record a managed asset failure with its severity and optionally try to recover"""
    lesson = video_store.get_lesson(lesson_id)
    if not lesson.managed_asset_id:
        raise NotFound("Lesson has no managed asset")
    client = client or get_provider_client()

    asset = client.get_asset(lesson.managed_asset_id)
    if asset['status'] != 'errored':
        apply_asset_state(lesson.id, asset, schedule_recovery=False)
        return {
            'lesson_id': str(lesson.id),
            'asset_id': lesson.managed_asset_id,
            'status': asset['status'],
            'requires_action': False,
        }

    error = describe_asset_error(asset.get('errors'))
    apply_asset_state(lesson.id, asset, schedule_recovery=False)
    logger.error(
        f"Managed asset {lesson.managed_asset_id} for lesson {lesson.id} errored "
        f"({error['severity']}): {'; '.join(error['messages'])}"
    )

    details = {
        'lesson_id': str(lesson.id),
        'asset_id': lesson.managed_asset_id,
        'status': 'errored',
        'severity': error['severity'],
        'error_type': error['type'],
        'messages': error['messages'],
        'requires_action': True,
        'recovery_attempted': False,
    }

    if attempt_recovery and error['severity'] != 'critical':
        recovery = retry_asset_processing(lesson.id, max_retries=2, client=client, sleep=sleep)
        details.update({
            'recovery_attempted': True,
            'recovered': recovery['success'],
            'recovery': recovery,
            'requires_action': not recovery['success'],
        })

    return details


def sync_managed_analytics(limit=100):
    """Refresh cached analytics for lessons playing from the managed provider"""
    from services.analytics_engine import analytics_engine

    lessons = Lesson.objects.filter(
        video_provider=Lesson.PROVIDER_MANAGED,
        managed_status='ready',
    ).order_by('-updated_at')[:limit]

    refreshed = 0
    for lesson in lessons:
        try:
            analytics_engine.lesson_analytics(lesson.id, force_refresh=True)
            refreshed += 1
        except EduStreamBaseException as e:
            logger.error(f"Failed to refresh analytics for lesson {lesson.id}: {str(e)}")

    return {'success': True, 'refreshed': refreshed}


def cleanup_old_analytics(retention_days=None):
    """Delete view sessions past the retention window"""
    from services.analytics_engine import analytics_engine

    deleted = analytics_engine.cleanup_old_sessions(retention_days)
    return {'success': True, 'deleted_count': deleted}


def _lesson_id_from(data):
    passthrough = parse_passthrough(data.get('passthrough'))
    if not passthrough and isinstance(data.get('new_asset_settings'), dict):
        passthrough = parse_passthrough(data['new_asset_settings'].get('passthrough'))
    if isinstance(passthrough, dict):
        return passthrough.get('lessonId')
    return None


def handle_webhook(raw_body, signature_header, client=None):
    """
    Verify and apply a provider webhook.

    Signature problems raise PermissionDenied and malformed JSON raises
    InvalidInput. Anything that goes wrong while applying a valid event is
    logged and reported as ``handled=False``.
    """
    client = client or get_provider_client()
    if not client.verify_webhook_signature(raw_body, signature_header):
        logger.warning("Rejected provider webhook with invalid signature")
        raise PermissionDenied("Invalid webhook signature")

    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError) as e:
        raise InvalidInput("Webhook body is not valid JSON") from e
    if not isinstance(payload, dict):
        raise InvalidInput("Webhook body must be a JSON object")

    event_type = payload.get('type', '')
    data = payload.get('data') or {}
    try:
        return _dispatch(_event_name(event_type), event_type, data)
    except EduStreamBaseException as e:
        logger.error(f"Failed to handle webhook {event_type}: {str(e)}")
        return {'handled': False, 'event_type': event_type, 'action': 'error', 'error': str(e)}


def _dispatch(name, event_type, data):
    result = {'handled': False, 'event_type': event_type, 'action': 'ignored'}

    if name.startswith('asset.'):
        asset = normalize_asset(data)
        lesson = video_store.find_lesson_for_managed_event(
            asset_id=asset['asset_id'],
            upload_id=asset.get('upload_id'),
            lesson_id=_lesson_id_from(data),
        )
    elif name.startswith('upload.'):
        asset = None
        lesson = video_store.find_lesson_for_managed_event(
            upload_id=data.get('id'),
            lesson_id=_lesson_id_from(data),
        )
    else:
        logger.info(f"Ignoring unknown webhook event {event_type}")
        return result

    if lesson is None:
        logger.warning(f"No lesson found for webhook {event_type}")
        result['action'] = 'lesson_not_found'
        return result

    result['lesson_id'] = str(lesson.id)
    changed = False

    if name == 'asset.ready':
        asset['status'] = 'ready'
        lesson, changed = apply_asset_state(lesson.id, asset)
        result['action'] = 'ready'
    elif name == 'asset.errored':
        asset['status'] = 'errored'
        lesson, changed = apply_asset_state(lesson.id, asset)
        result['action'] = 'errored'
    elif name == 'asset.deleted':
        if lesson.managed_asset_id and lesson.managed_asset_id == asset['asset_id']:
            video_store.reset_managed_fields(lesson.id)
            changed = True
        result['action'] = 'deleted'
    elif name == 'upload.asset_created':
        lesson, changed = video_store.apply_managed_state(
            lesson.id,
            status='processing',
            asset_id=data.get('asset_id'),
            upload_id=data.get('id'),
        )
        result['action'] = 'asset_created'
    elif name in ('upload.cancelled', 'upload.errored'):
        if not lesson.managed_asset_id:
            lesson, changed = video_store.apply_managed_state(
                lesson.id,
                status='errored',
                error=data.get('error') or {'messages': [f"Upload {name.split('.')[1]}"]},
            )
        result['action'] = name.split('.')[1]
    else:
        logger.info(f"Ignoring webhook event {event_type}")
        return result

    result['handled'] = True
    result['changed'] = changed
    logger.info(f"Webhook {event_type} applied to lesson {lesson.id} (changed={changed})")
    return result
