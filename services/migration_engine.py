"""
Migration engine for EduStream Backend
Moves lesson videos from self-hosted storage to the managed provider
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import requests
from django.conf import settings
from django.db import connections
from django.db.models import Q
from django.utils import timezone

from apps.courses.models import Lesson
from core.exceptions import (
    ConflictState,
    EduStreamBaseException,
    InvalidInput,
    NotFound,
    ProviderRejected,
    ProviderUnavailable,
    StorageUnavailable,
)
from core.utils import chunked
from services import reconciliation, video_store
from services.object_store import get_object_store
from services.progress_bus import progress_bus
from services.provider_client import get_provider_client

logger = logging.getLogger(__name__)

SOURCE_URL_TTL = 3600
TRANSFER_CHUNK_SIZE = 1024 * 1024

# Failures that another attempt cannot fix
PERMANENT_ERRORS = (NotFound, InvalidInput)


class SizedStream:
    """
    Iterable request body that reports the source length.

    requests sends a plain ``Content-Length`` for bodies with a length and
    falls back to chunked transfer only when the length is unknown (0).
    """

    def __init__(self, chunks, length=0, limit=None):
        self._chunks = chunks
        self._length = length
        self._limit = limit
        self.sent = 0

    def __len__(self):
        return self._length

    def __iter__(self):
        for chunk in self._chunks:
            if not chunk:
                continue
            self.sent += len(chunk)
            if self._limit and self.sent > self._limit:
                raise InvalidInput(f"Video exceeds the migration limit of {self._limit} bytes")
            yield chunk


class MigrationEngine:
    """Batch and single-lesson migration to the managed provider"""

    def __init__(self, client=None, store=None, http=None, sleep=time.sleep, executor_factory=None):
        self._client = client
        self._store = store
        self.http = http or requests.Session()
        self.sleep = sleep
        self.executor_factory = executor_factory or ThreadPoolExecutor
        self.max_file_size = getattr(settings, 'MAX_MIGRATION_FILE_SIZE', 5 * 1024 * 1024 * 1024)
        self.upload_timeout = getattr(settings, 'MIGRATION_UPLOAD_TIMEOUT', 600)

    @property
    def client(self):
        if self._client is None:
            self._client = get_provider_client()
        return self._client

    @property
    def store(self):
        if self._store is None:
            self._store = get_object_store()
        return self._store

    def migrate_batch(self, lesson_ids, batch_size=3, keep_self_backup=True, retry_attempts=2,
                      inter_wave_delay=2, on_progress=None):
        """Migrate lessons in concurrent waves of ``batch_size``"""
        started = time.monotonic()
        summary = {'total': len(lesson_ids), 'successful': 0, 'failed': 0, 'skipped': 0, 'details': []}
        if not lesson_ids:
            summary['duration_ms'] = 0
            return summary

        waves = chunked(lesson_ids, max(1, batch_size))
        completed = 0
        with self.executor_factory(max_workers=max(1, batch_size)) as executor:
            for index, wave in enumerate(waves):
                futures = [
                    (lesson_id, executor.submit(self._run_isolated, lesson_id, keep_self_backup, retry_attempts))
                    for lesson_id in wave
                ]
                for lesson_id, future in futures:
                    try:
                        outcome = future.result()
                    except Exception as e:
                        logger.exception(f"Unexpected error migrating lesson {lesson_id}")
                        outcome = {'success': False, 'lesson_id': str(lesson_id), 'status': 'failed', 'error': str(e)}

                    if outcome['status'] == 'already_migrated':
                        summary['skipped'] += 1
                    elif outcome['success']:
                        summary['successful'] += 1
                    else:
                        summary['failed'] += 1
                    summary['details'].append(outcome)

                completed += len(wave)
                progress = {
                    'completed': completed,
                    'total': len(lesson_ids),
                    'percentage': round(completed / len(lesson_ids) * 100, 1),
                }
                if on_progress:
                    on_progress(progress)
                progress_bus.publish_dashboard(None, 'migration_progress', progress)

                if index < len(waves) - 1 and inter_wave_delay:
                    self.sleep(inter_wave_delay)

        summary['duration_ms'] = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Migration batch finished: {summary['successful']} migrated, "
            f"{summary['skipped']} skipped, {summary['failed']} failed"
        )
        return summary

    def _run_isolated(self, lesson_id, keep_self_backup, retry_attempts):
        try:
            return self.migrate_single_video(lesson_id, keep_self_backup, retry_attempts)
        finally:
            # Worker threads own their database connections
            if threading.current_thread() is not threading.main_thread():
                connections.close_all()

    def migrate_single_video(self, lesson_id, keep_self_backup=True, retry_attempts=2):
        """Copy one lesson's original to a managed direct upload"""
        lesson = video_store.get_lesson(lesson_id)
        if lesson.managed_asset_id:
            return {
                'success': True,
                'lesson_id': str(lesson.id),
                'status': 'already_migrated',
                's3_backup_kept': lesson.has_self_video,
                'attempts': 0,
            }

        max_attempts = retry_attempts + 1
        last_error = None
        for attempt in range(1, max_attempts + 1):
            try:
                upload_id = self._transfer(lesson)
            except EduStreamBaseException as e:
                last_error = e
                video_store.record_migration_error(lesson.id, e, attempt)
                logger.warning(f"Migration of lesson {lesson.id} failed on attempt {attempt}/{max_attempts}: {e}")
                if isinstance(e, PERMANENT_ERRORS) or attempt >= max_attempts:
                    break
                self.sleep(2 ** attempt)
                continue

            extra_fields = {
                'migration_attempt_count': attempt,
                'migration_kept_self_backup': keep_self_backup,
                'migration_last_error': None,
            }
            if not keep_self_backup:
                extra_fields.update({'video_url': '', 'hls_url': '', 'object_key': '', 'video_asset_id': None})
            video_store.start_managed_upload(lesson.id, upload_id, extra_fields=extra_fields)

            logger.info(f"Migrated lesson {lesson.id} to managed upload {upload_id} in {attempt} attempt(s)")
            return {
                'success': True,
                'lesson_id': str(lesson.id),
                'status': 'migrated',
                'upload_id': upload_id,
                's3_backup_kept': keep_self_backup,
                'attempts': attempt,
            }

        return {
            'success': False,
            'lesson_id': str(lesson.id),
            'status': 'failed',
            's3_backup_kept': True,
            'attempts': attempt,
            'error': str(last_error),
        }

    def _source_url(self, lesson):
        if lesson.object_key:
            return self.store.signed_stream_url(lesson.object_key, ttl_seconds=SOURCE_URL_TTL)
        if lesson.video_url:
            return lesson.video_url
        raise NotFound(f"Lesson {lesson.id} has no self-hosted video to migrate")

    def _transfer(self, lesson):
        """Stream the original into a fresh direct upload; returns the upload id"""
        source_url = self._source_url(lesson)
        upload = self.client.create_direct_upload(passthrough={
            'lessonId': str(lesson.id),
            'migrationSource': 'self',
            'originalUrl': lesson.object_key or lesson.video_url,
            'migratedAt': timezone.now().isoformat(),
            'title': lesson.title[:100],
        })

        try:
            self._stream(source_url, upload['upload_url'])
        except EduStreamBaseException:
            try:
                self.client.cancel_upload(upload['upload_id'])
            except EduStreamBaseException as cancel_error:
                logger.debug(f"Could not cancel upload {upload['upload_id']}: {cancel_error}")
            raise

        return upload['upload_id']

    def _stream(self, source_url, upload_url):
        try:
            with self.http.get(source_url, stream=True, timeout=(10, self.upload_timeout)) as source:
                if source.status_code == 404:
                    raise NotFound("Source video not found in storage")
                if source.status_code >= 500:
                    raise StorageUnavailable(f"Source download failed with {source.status_code}")
                if source.status_code >= 400:
                    raise InvalidInput(f"Source download rejected with {source.status_code}")

                content_length = source.headers.get('Content-Length')
                if content_length and int(content_length) > self.max_file_size:
                    raise InvalidInput(
                        f"Video exceeds the migration limit of {self.max_file_size} bytes",
                        details={'size': int(content_length)},
                    )

                body = SizedStream(
                    source.iter_content(chunk_size=TRANSFER_CHUNK_SIZE),
                    length=int(content_length) if content_length else 0,
                    limit=self.max_file_size,
                )
                response = self.http.put(
                    upload_url,
                    data=body,
                    headers={'Content-Type': source.headers.get('Content-Type') or 'video/mp4'},
                    timeout=self.upload_timeout,
                )
        except requests.RequestException as e:
            raise ProviderUnavailable(f"Video transfer failed: {str(e)}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderUnavailable(f"Upload endpoint returned {response.status_code}")
        if response.status_code >= 400:
            raise ProviderRejected(
                f"Upload endpoint rejected the video with {response.status_code}",
                details={'status': response.status_code},
            )

    def verify_migration(self, lesson_id, wait=False, max_polls=60, poll_interval=5):
        """
        Refresh a migrated lesson from the provider and report whether it plays.

        With ``wait`` the provider is polled until the asset is ready or errored.
        """
        lesson = video_store.get_lesson(lesson_id)
        if not lesson.managed_asset_id:
            return {'verified': False, 'status': 'not_migrated'}

        if wait:
            try:
                asset = self.client.wait_for_asset_ready(
                    lesson.managed_asset_id, max_attempts=max_polls, poll_interval=poll_interval,
                )
            except ProviderRejected as e:
                asset = {
                    'asset_id': lesson.managed_asset_id,
                    'status': 'errored',
                    'errors': (e.details or {}).get('errors'),
                }
        else:
            asset = self.client.get_asset(lesson.managed_asset_id)
        lesson, _ = reconciliation.apply_asset_state(lesson.id, asset)
        return {
            'verified': lesson.managed_status == 'ready',
            'status': lesson.managed_status,
            'playback_id': lesson.managed_playback_id or None,
            'duration': asset.get('duration'),
        }

    def rollback_migration(self, lesson_id):
        """Return a lesson to its self-hosted copy and drop the managed asset"""
        lesson = video_store.get_lesson(lesson_id)
        if not lesson.has_self_video:
            raise ConflictState("Lesson has no self-hosted backup to roll back to")

        asset_deleted = None
        if lesson.managed_asset_id:
            try:
                self.client.delete_asset(lesson.managed_asset_id)
                asset_deleted = True
            except EduStreamBaseException as e:
                logger.error(f"Rollback could not delete asset {lesson.managed_asset_id}: {str(e)}")
                asset_deleted = False
        elif lesson.managed_upload_id:
            try:
                self.client.cancel_upload(lesson.managed_upload_id)
            except EduStreamBaseException as e:
                logger.debug(f"Could not cancel upload {lesson.managed_upload_id}: {e}")

        video_store.reset_managed_fields(lesson.id, provider=Lesson.PROVIDER_SELF)
        logger.info(f"Rolled back lesson {lesson.id} to self-hosted playback")
        return {
            'success': True,
            'lesson_id': str(lesson.id),
            'status': 'rolled_back',
            'provider': Lesson.PROVIDER_SELF,
            'asset_deleted': asset_deleted,
        }

    def get_migration_status(self):
        """Platform-wide migration counters"""
        has_self = ~Q(video_url='') | ~Q(object_key='') | ~Q(hls_url='')
        has_video = has_self | Q(video_provider__in=[Lesson.PROVIDER_SELF, Lesson.PROVIDER_MANAGED])
        lessons = Lesson.objects.filter(has_video)

        total = lessons.count()
        managed = lessons.filter(managed_status='ready').exclude(managed_playback_id='').count()
        preparing = lessons.filter(managed_status__in=['uploading', 'preparing', 'processing']).count()
        errored = lessons.filter(managed_status='errored').count()

        return {
            'total': total,
            'self': total - managed,
            'managed': managed,
            'errored': errored,
            'preparing': preparing,
            'migration_progress': round(managed / total * 100, 1) if total else 0,
        }


migration_engine = MigrationEngine()
