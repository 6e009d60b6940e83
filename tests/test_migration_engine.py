"""Migration engine tests with an inline executor and stubbed transfers."""

from concurrent.futures import Future
from unittest import mock

from django.test import TestCase

from apps.courses.models import Lesson
from core.exceptions import ConflictState, ProviderRejected, ProviderUnavailable
from services import provider_resolver
from services.migration_engine import MigrationEngine
from tests.factories import CourseFactory, LessonFactory


class InlineExecutor:
    """Runs submitted work immediately on the calling thread"""

    def __init__(self, max_workers=None):
        self.max_workers = max_workers

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


def self_hosted_lesson(**kwargs):
    lesson = LessonFactory(video_provider=Lesson.PROVIDER_SELF, **kwargs)
    key = f"originals/{lesson.id}-1700000000000-lecture.mp4"
    Lesson.objects.filter(pk=lesson.pk).update(object_key=key, video_url=f"https://cdn.test/{key}")
    lesson.refresh_from_db()
    return lesson


class MigrationTestCase(TestCase):
    def setUp(self):
        self.client_mock = mock.MagicMock(name='ProviderClient')
        self.client_mock.create_direct_upload.side_effect = self.create_upload
        self.store = mock.MagicMock(name='ObjectStore')
        self.store.signed_stream_url.side_effect = lambda key, ttl_seconds=3600: f"https://signed.test/{key}"

        self.source = mock.MagicMock(name='source')
        self.source.status_code = 200
        self.source.headers = {'Content-Length': '2048', 'Content-Type': 'video/mp4'}
        self.source.iter_content.return_value = iter([b'\x00' * 1024, b'\x00' * 1024])
        self.http = mock.MagicMock(name='http')
        self.http.get.return_value.__enter__.return_value = self.source
        self.failures = {}
        self.http.put.side_effect = self.put

        self.engine = MigrationEngine(
            client=self.client_mock,
            store=self.store,
            http=self.http,
            sleep=lambda seconds: None,
            executor_factory=InlineExecutor,
        )

    def create_upload(self, passthrough=None, **kwargs):
        lesson_id = passthrough['lessonId']
        return {
            'upload_id': f"up-{lesson_id}",
            'upload_url': f"https://upload.test/{lesson_id}",
            'status': 'waiting',
            'timeout_seconds': 3600,
        }

    def put(self, url, data=None, headers=None, timeout=None):
        lesson_id = url.rsplit('/', 1)[1]
        response = mock.MagicMock()
        if self.failures.get(lesson_id, 0) > 0:
            self.failures[lesson_id] -= 1
            response.status_code = 503
        else:
            response.status_code = 200
        return response

    def test_batch_with_transient_failure_keeps_backups(self):
        lessons = [self_hosted_lesson() for _ in range(10)]
        flaky = lessons[6]
        self.failures[str(flaky.id)] = 1
        progress = []

        summary = self.engine.migrate_batch(
            [lesson.id for lesson in lessons],
            batch_size=3,
            keep_self_backup=True,
            inter_wave_delay=0,
            on_progress=progress.append,
        )

        self.assertEqual(summary['total'], 10)
        self.assertEqual(summary['successful'], 10)
        self.assertEqual(summary['failed'], 0)
        self.assertEqual([p['completed'] for p in progress], [3, 6, 9, 10])
        self.client_mock.cancel_upload.assert_called_once_with(f"up-{flaky.id}")

        for lesson in Lesson.objects.filter(pk__in=[lesson.pk for lesson in lessons]):
            self.assertEqual(lesson.video_provider, Lesson.PROVIDER_MANAGED)
            self.assertTrue(lesson.object_key)
            self.assertTrue(lesson.migration_kept_self_backup)
            self.assertEqual(lesson.managed_upload_id, f"up-{lesson.id}")

        flaky.refresh_from_db()
        self.assertEqual(flaky.migration_attempt_count, 2)
        self.assertIsNone(flaky.migration_last_error)

    def test_empty_batch(self):
        summary = self.engine.migrate_batch([])

        self.assertEqual(summary['total'], 0)
        self.assertEqual(summary['duration_ms'], 0)
        self.client_mock.create_direct_upload.assert_not_called()

    def test_without_backup_self_fields_are_cleared(self):
        lesson = self_hosted_lesson()

        result = self.engine.migrate_single_video(lesson.id, keep_self_backup=False)

        self.assertFalse(result['s3_backup_kept'])
        lesson.refresh_from_db()
        self.assertEqual(lesson.object_key, '')
        self.assertEqual(lesson.video_url, '')
        self.assertEqual(lesson.managed_status, 'preparing')

    def test_exhausted_retries_report_failure(self):
        lesson = self_hosted_lesson()
        self.failures[str(lesson.id)] = 10

        result = self.engine.migrate_single_video(lesson.id, retry_attempts=2)

        self.assertFalse(result['success'])
        self.assertEqual(result['attempts'], 3)
        lesson.refresh_from_db()
        self.assertEqual(lesson.migration_attempt_count, 3)
        self.assertEqual(lesson.migration_last_error['kind'], 'provider_unavailable')
        self.assertEqual(lesson.managed_upload_id, '')

    def test_missing_source_is_not_retried(self):
        lesson = self_hosted_lesson()
        self.source.status_code = 404

        result = self.engine.migrate_single_video(lesson.id, retry_attempts=2)

        self.assertFalse(result['success'])
        self.assertEqual(result['attempts'], 1)

    def test_already_migrated_lesson_is_skipped(self):
        lesson = self_hosted_lesson(managed_asset_id='A', managed_status='ready')

        summary = self.engine.migrate_batch([lesson.id], inter_wave_delay=0)

        self.assertEqual(summary['skipped'], 1)
        self.client_mock.create_direct_upload.assert_not_called()

    def test_unexpected_errors_are_isolated(self):
        good = self_hosted_lesson()
        self.client_mock.create_direct_upload.side_effect = [
            RuntimeError('boom'),
            self.create_upload(passthrough={'lessonId': str(good.id)}),
        ]
        broken = self_hosted_lesson()

        summary = self.engine.migrate_batch([broken.id, good.id], batch_size=2, inter_wave_delay=0)

        self.assertEqual(summary['failed'], 1)
        self.assertEqual(summary['successful'], 1)


class RollbackTestCase(TestCase):
    def setUp(self):
        self.client_mock = mock.MagicMock(name='ProviderClient')
        self.engine = MigrationEngine(client=self.client_mock, store=mock.MagicMock(), http=mock.MagicMock())

    def test_rollback_restores_self_playback(self):
        lesson = self_hosted_lesson(
            managed_upload_id='up-1', managed_asset_id='A', managed_playback_id='P',
            managed_status='ready',
        )
        Lesson.objects.filter(pk=lesson.pk).update(video_provider=Lesson.PROVIDER_MANAGED)

        result = self.engine.rollback_migration(lesson.id)

        self.assertTrue(result['asset_deleted'])
        self.client_mock.delete_asset.assert_called_once_with('A')
        lesson.refresh_from_db()
        self.assertEqual(lesson.video_provider, Lesson.PROVIDER_SELF)
        self.assertEqual(lesson.managed_asset_id, '')
        self.assertEqual(lesson.managed_playback_id, '')

        info = provider_resolver.get_playback_info(lesson)
        self.assertEqual(info['provider'], 'self')
        self.assertEqual(info['playbackUrl'], lesson.video_url)

    def test_rollback_without_backup_conflicts(self):
        lesson = LessonFactory(managed_asset_id='A', managed_status='ready', video_provider=Lesson.PROVIDER_MANAGED)

        with self.assertRaises(ConflictState):
            self.engine.rollback_migration(lesson.id)
        self.client_mock.delete_asset.assert_not_called()

    def test_rollback_survives_provider_failure(self):
        lesson = self_hosted_lesson(managed_asset_id='A', managed_status='ready')
        self.client_mock.delete_asset.side_effect = ProviderUnavailable('down')

        result = self.engine.rollback_migration(lesson.id)

        self.assertFalse(result['asset_deleted'])
        lesson.refresh_from_db()
        self.assertEqual(lesson.video_provider, Lesson.PROVIDER_SELF)

    def test_verify_promotes_ready_asset(self):
        lesson = self_hosted_lesson(managed_asset_id='A', managed_status='processing')
        self.client_mock.get_asset.return_value = {
            'asset_id': 'A', 'status': 'ready', 'playback_ids': [{'id': 'P', 'policy': 'signed'}],
            'duration': 30.0, 'tracks': [],
        }

        result = self.engine.verify_migration(lesson.id)

        self.assertTrue(result['verified'])
        self.assertEqual(result['playback_id'], 'P')

    def test_verify_can_wait_for_the_asset(self):
        lesson = self_hosted_lesson(managed_asset_id='A', managed_status='processing')
        self.client_mock.wait_for_asset_ready.return_value = {
            'asset_id': 'A', 'status': 'ready', 'playback_ids': [{'id': 'P', 'policy': 'signed'}],
            'duration': 30.0, 'tracks': [],
        }

        result = self.engine.verify_migration(lesson.id, wait=True, max_polls=4, poll_interval=1)

        self.client_mock.wait_for_asset_ready.assert_called_once_with('A', max_attempts=4, poll_interval=1)
        self.client_mock.get_asset.assert_not_called()
        self.assertTrue(result['verified'])
        self.assertEqual(result['duration'], 30.0)

    def test_verify_records_asset_that_errors_while_waiting(self):
        lesson = self_hosted_lesson(managed_asset_id='A', managed_status='processing')
        self.client_mock.wait_for_asset_ready.side_effect = ProviderRejected(
            'Asset A failed processing', details={'errors': {'type': 'invalid_input', 'messages': ['corrupt']}},
        )

        result = self.engine.verify_migration(lesson.id, wait=True)

        self.assertFalse(result['verified'])
        self.assertEqual(result['status'], 'errored')
        lesson.refresh_from_db()
        self.assertEqual(lesson.managed_error['type'], 'invalid_input')
        self.assertEqual(lesson.managed_error['severity'], 'critical')

    def test_verify_unmigrated_lesson(self):
        lesson = self_hosted_lesson()

        self.assertEqual(self.engine.verify_migration(lesson.id), {'verified': False, 'status': 'not_migrated'})

    def test_migration_status_counts(self):
        course = CourseFactory()
        self_hosted_lesson(course=course)
        self_hosted_lesson(course=course, managed_asset_id='A', managed_playback_id='P', managed_status='ready')
        self_hosted_lesson(course=course, managed_upload_id='up', managed_status='preparing')
        LessonFactory(course=course)

        status = self.engine.get_migration_status()

        self.assertEqual(status['total'], 3)
        self.assertEqual(status['managed'], 1)
        self.assertEqual(status['preparing'], 1)
        self.assertEqual(status['self'], 2)
