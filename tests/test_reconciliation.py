"""Status sync and webhook intake tests."""

import hashlib
import hmac
import json
import time
from unittest import mock

from django.test import TestCase

from apps.courses.models import Lesson
from core.exceptions import InvalidInput, NotFound, PermissionDenied, ProviderUnavailable
from services import ingest_pipeline, provider_resolver, reconciliation
from services.provider_client import ProviderClient
from tests.factories import LessonFactory

WEBHOOK_SECRET = 'whsec-test'


def signed(payload):
    body = json.dumps(payload).encode()
    timestamp = int(time.time())
    digest = hmac.new(WEBHOOK_SECRET.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    return body, f"t={timestamp},v1={digest}"


def provider_asset(asset_id='A', status='ready', playback_id='P', duration=42.0):
    return {
        'asset_id': asset_id,
        'status': status,
        'playback_ids': [{'id': playback_id, 'policy': 'signed'}] if playback_id else [],
        'duration': duration,
        'aspect_ratio': '16:9',
        'max_stored_resolution': 'HD',
        'tracks': [],
        'errors': None,
    }


class WebhookTestCase(TestCase):
    def setUp(self):
        self.lesson = LessonFactory()
        self.owner = self.lesson.course.created_by
        self.client_mock = mock.MagicMock(name='ProviderClient')
        self.client_mock.create_direct_upload.return_value = {
            'upload_id': 'up-1',
            'upload_url': 'https://upload.test/put',
            'status': 'waiting',
            'timeout_seconds': 3600,
            'cors_origin': '*',
        }
        self.webhook_client = ProviderClient(token_id='id', token_secret='secret', webhook_secret=WEBHOOK_SECRET)

    def deliver(self, event_type, data):
        body, header = signed({'type': event_type, 'data': data})
        return reconciliation.handle_webhook(body, header, client=self.webhook_client)

    def asset_created(self):
        return self.deliver('video.upload.asset_created', {'id': 'up-1', 'asset_id': 'A'})

    def asset_ready(self):
        return self.deliver('video.asset.ready', {
            'id': 'A',
            'status': 'ready',
            'playback_ids': [{'id': 'P', 'policy': 'signed'}],
            'duration': 42.0,
            'upload_id': 'up-1',
        })

    def test_direct_upload_lifecycle_ends_ready(self):
        ingest_pipeline.upload_via_managed(self.lesson.id, self.owner.id, client=self.client_mock)

        created = self.asset_created()
        ready = self.asset_ready()

        self.assertEqual(created['action'], 'asset_created')
        self.assertTrue(ready['changed'])
        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.managed_asset_id, 'A')
        self.assertEqual(self.lesson.managed_playback_id, 'P')
        self.assertEqual(self.lesson.managed_status, 'ready')
        self.assertEqual(self.lesson.video_provider, Lesson.PROVIDER_MANAGED)
        self.assertEqual(self.lesson.duration_seconds, 42.0)

        info = provider_resolver.get_playback_info(
            self.lesson,
            token_issuer=lambda pid: f"token-{pid}",
            playback_policy='signed',
        )
        self.assertEqual(info['status'], 'ready')
        self.assertEqual(info['metadata']['playbackToken'], 'token-P')

    def test_duplicate_delivery_changes_nothing(self):
        ingest_pipeline.upload_via_managed(self.lesson.id, self.owner.id, client=self.client_mock)
        self.asset_created()
        self.asset_ready()

        repeat = self.asset_ready()

        self.assertTrue(repeat['handled'])
        self.assertFalse(repeat['changed'])

    def test_reordered_delivery_converges(self):
        ingest_pipeline.upload_via_managed(self.lesson.id, self.owner.id, client=self.client_mock)

        self.asset_ready()
        self.asset_created()

        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.managed_status, 'ready')
        self.assertEqual(self.lesson.managed_playback_id, 'P')

    def test_event_for_replaced_asset_is_ignored(self):
        Lesson.objects.filter(pk=self.lesson.pk).update(managed_asset_id='B', managed_status='processing')

        result = self.deliver('video.asset.ready', {
            'id': 'A',
            'status': 'ready',
            'playback_ids': [{'id': 'P', 'policy': 'signed'}],
            'passthrough': json.dumps({'lessonId': str(self.lesson.id)}),
        })

        self.assertFalse(result['changed'])
        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.managed_asset_id, 'B')
        self.assertEqual(self.lesson.managed_status, 'processing')

    def test_errored_asset_is_recorded(self):
        Lesson.objects.filter(pk=self.lesson.pk).update(managed_asset_id='A', managed_status='processing')

        self.deliver('video.asset.errored', {
            'id': 'A',
            'status': 'errored',
            'errors': {'type': 'invalid_input', 'messages': ['The file is corrupt']},
        })

        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.managed_status, 'errored')
        self.assertEqual(self.lesson.managed_error['messages'], ['The file is corrupt'])

    def test_deleted_asset_falls_back_to_self_video(self):
        Lesson.objects.filter(pk=self.lesson.pk).update(
            managed_asset_id='A', managed_playback_id='P', managed_status='ready',
            video_provider=Lesson.PROVIDER_MANAGED, object_key='originals/x-1-a.mp4',
        )

        result = self.deliver('video.asset.deleted', {'id': 'A'})

        self.assertEqual(result['action'], 'deleted')
        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.managed_asset_id, '')
        self.assertEqual(self.lesson.video_provider, Lesson.PROVIDER_SELF)

    def test_unknown_lesson_is_reported(self):
        result = self.deliver('video.asset.ready', {'id': 'nobody', 'status': 'ready'})

        self.assertFalse(result['handled'])
        self.assertEqual(result['action'], 'lesson_not_found')

    def test_bad_signature_is_rejected(self):
        body, _ = signed({'type': 'video.asset.ready', 'data': {}})

        with self.assertRaises(PermissionDenied):
            reconciliation.handle_webhook(body, 't=1,v1=deadbeef', client=self.webhook_client)

    def test_malformed_json_is_invalid(self):
        timestamp = int(time.time())
        body = b'{not json'
        digest = hmac.new(WEBHOOK_SECRET.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()

        with self.assertRaises(InvalidInput):
            reconciliation.handle_webhook(body, f"t={timestamp},v1={digest}", client=self.webhook_client)

    def asset_errored(self, errors=None):
        return self.deliver('video.asset.errored', {
            'id': 'A',
            'status': 'errored',
            'errors': errors or {'type': 'other', 'messages': ['Temporary glitch']},
        })

    def test_late_error_does_not_undo_ready(self):
        ingest_pipeline.upload_via_managed(self.lesson.id, self.owner.id, client=self.client_mock)
        self.asset_created()
        self.asset_ready()

        result = self.asset_errored()

        self.assertFalse(result['changed'])
        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.managed_status, 'ready')
        self.assertEqual(self.lesson.managed_playback_id, 'P')
        self.assertIsNone(self.lesson.managed_error)

    def test_ready_after_error_wins(self):
        ingest_pipeline.upload_via_managed(self.lesson.id, self.owner.id, client=self.client_mock)
        self.asset_created()
        self.asset_errored()

        result = self.asset_ready()

        self.assertTrue(result['changed'])
        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.managed_status, 'ready')
        self.assertEqual(self.lesson.managed_playback_id, 'P')
        self.assertIsNone(self.lesson.managed_error)


class StatusSyncTestCase(TestCase):
    def setUp(self):
        self.client_mock = mock.MagicMock(name='ProviderClient')
        self.client_mock.is_configured.return_value = True

    def test_upload_with_ready_asset_is_ready_after_one_sync(self):
        lesson = LessonFactory(
            managed_upload_id='up-1', managed_status='preparing', video_provider=Lesson.PROVIDER_MANAGED,
        )
        self.client_mock.get_upload.return_value = {'upload_id': 'up-1', 'status': 'asset_created', 'asset_id': 'A'}
        self.client_mock.get_asset.return_value = provider_asset()

        result = reconciliation.sync_managed_statuses(client=self.client_mock)

        self.assertEqual(result['synced_count'], 1)
        self.assertEqual(result['lessons'][0]['action'], 'status_ready')
        lesson.refresh_from_db()
        self.assertEqual(lesson.managed_status, 'ready')
        self.assertEqual(lesson.managed_playback_id, 'P')
        self.assertEqual(lesson.managed_metadata['aspectRatio'], '16:9')

    def test_failed_upload_marks_lesson_errored(self):
        lesson = LessonFactory(managed_upload_id='up-1', managed_status='preparing')
        self.client_mock.get_upload.return_value = {'upload_id': 'up-1', 'status': 'timed_out', 'asset_id': None}

        reconciliation.sync_managed_statuses(client=self.client_mock)

        lesson.refresh_from_db()
        self.assertEqual(lesson.managed_status, 'errored')
        self.client_mock.get_asset.assert_not_called()

    def test_errored_lessons_are_not_polled(self):
        LessonFactory(managed_upload_id='up-1', managed_status='errored')

        result = reconciliation.sync_managed_statuses(client=self.client_mock)

        self.assertEqual(result['synced_count'], 0)
        self.client_mock.get_upload.assert_not_called()

    def test_provider_errors_are_counted_per_lesson(self):
        LessonFactory(managed_asset_id='A', managed_status='processing')
        self.client_mock.get_asset.side_effect = ProviderUnavailable('provider down')

        result = reconciliation.sync_managed_statuses(client=self.client_mock)

        self.assertTrue(result['success'])
        self.assertEqual(result['failed_count'], 1)

    def test_unconfigured_provider_skips_sync(self):
        self.client_mock.is_configured.return_value = False

        result = reconciliation.sync_managed_statuses(client=self.client_mock)

        self.assertFalse(result['success'])
        self.assertEqual(result['synced_count'], 0)

    def test_processing_asset_stays_processing(self):
        lesson = LessonFactory(managed_asset_id='A', managed_status='preparing')
        self.client_mock.get_asset.return_value = provider_asset(status='ready', playback_id=None)

        reconciliation.sync_managed_statuses(client=self.client_mock)

        lesson.refresh_from_db()
        self.assertEqual(lesson.managed_status, 'processing')
        self.assertEqual(lesson.managed_playback_id, '')


class AssetErrorTestCase(TestCase):
    def setUp(self):
        self.lesson = LessonFactory(
            managed_asset_id='A', managed_status='processing', video_provider=Lesson.PROVIDER_MANAGED,
        )
        self.client_mock = mock.MagicMock(name='ProviderClient')
        self.sleeps = []

    def errored_asset(self, messages=('Temporary glitch',), error_type='other'):
        asset = provider_asset(status='errored', playback_id=None)
        asset['errors'] = {'type': error_type, 'messages': list(messages)}
        return asset

    def test_describe_asset_error_severity(self):
        warning = reconciliation.describe_asset_error({'type': 'other', 'messages': ['Temporary glitch']})
        critical = reconciliation.describe_asset_error({'type': 'invalid_input', 'messages': ['bad']})
        empty = reconciliation.describe_asset_error(None)

        self.assertEqual(warning['severity'], 'warning')
        self.assertEqual(critical['severity'], 'critical')
        self.assertEqual(critical['type'], 'invalid_input')
        self.assertEqual(empty['messages'], ['Asset processing failed'])

    def test_transient_error_schedules_recovery_on_commit(self):
        with mock.patch('apps.videos.tasks.recover_managed_asset_task') as task:
            with self.captureOnCommitCallbacks(execute=True):
                reconciliation.apply_asset_state(self.lesson.id, self.errored_asset())

        task.delay.assert_called_once_with(str(self.lesson.id))
        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.managed_error['severity'], 'warning')

    def test_critical_error_is_not_retried(self):
        with mock.patch('apps.videos.tasks.recover_managed_asset_task') as task:
            with self.captureOnCommitCallbacks(execute=True):
                reconciliation.apply_asset_state(
                    self.lesson.id, self.errored_asset(['The file is corrupt'], 'invalid_input'),
                )

        task.delay.assert_not_called()
        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.managed_status, 'errored')
        self.assertEqual(self.lesson.managed_error['severity'], 'critical')

    def test_recovery_picks_up_a_ready_asset(self):
        self.client_mock.get_asset.side_effect = [self.errored_asset(), self.errored_asset(), provider_asset()]

        details = reconciliation.handle_asset_error(
            self.lesson.id, attempt_recovery=True, client=self.client_mock, sleep=self.sleeps.append,
        )

        self.assertTrue(details['recovery_attempted'])
        self.assertTrue(details['recovered'])
        self.assertFalse(details['requires_action'])
        self.assertEqual(details['recovery']['attempts'], 2)
        self.assertEqual(self.sleeps, [2])
        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.managed_status, 'ready')
        self.assertEqual(self.lesson.managed_playback_id, 'P')
        self.assertIsNone(self.lesson.managed_error)

    def test_critical_error_requires_action_without_recovery(self):
        self.client_mock.get_asset.return_value = self.errored_asset(['unsupported codec'])

        details = reconciliation.handle_asset_error(self.lesson.id, attempt_recovery=True, client=self.client_mock)

        self.assertEqual(details['severity'], 'critical')
        self.assertTrue(details['requires_action'])
        self.assertFalse(details['recovery_attempted'])
        self.assertEqual(self.client_mock.get_asset.call_count, 1)

    def test_healthy_asset_needs_no_action(self):
        self.client_mock.get_asset.return_value = provider_asset()

        details = reconciliation.handle_asset_error(self.lesson.id, client=self.client_mock)

        self.assertFalse(details['requires_action'])
        self.assertEqual(details['status'], 'ready')

    def test_retries_back_off_then_give_up(self):
        self.client_mock.get_asset.side_effect = [
            self.errored_asset(), ProviderUnavailable('provider down'), self.errored_asset(),
        ]

        result = reconciliation.retry_asset_processing(
            self.lesson.id, max_retries=3, client=self.client_mock, sleep=self.sleeps.append,
        )

        self.assertFalse(result['success'])
        self.assertEqual(result['attempts'], 3)
        self.assertEqual(self.sleeps, [2, 4])
        self.assertEqual([entry['attempt'] for entry in result['retry_log']], [1, 2, 3])
        self.assertEqual(result['retry_log'][1]['error'], 'provider down')
        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.managed_status, 'errored')

    def test_lesson_without_asset_is_not_found(self):
        lesson = LessonFactory()

        with self.assertRaises(NotFound):
            reconciliation.retry_asset_processing(lesson.id, client=self.client_mock)
        with self.assertRaises(NotFound):
            reconciliation.handle_asset_error(lesson.id, client=self.client_mock)
