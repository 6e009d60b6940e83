"""Video store tests: lesson field access, migration listings and managed state ordering."""

from django.test import TestCase

from apps.courses.models import Lesson
from core.exceptions import InvalidInput, NotFound
from services import video_store
from tests.factories import CourseFactory, LessonFactory


def lesson_on_self(**kwargs):
    lesson = LessonFactory(**kwargs)
    key = f"originals/{lesson.id}-1700000000000-lecture.mp4"
    Lesson.objects.filter(pk=lesson.pk).update(
        video_provider=Lesson.PROVIDER_SELF, object_key=key, video_url=f"https://cdn.test/{key}",
    )
    lesson.refresh_from_db()
    return lesson


class LessonVideoFieldsTestCase(TestCase):
    def test_fields_include_identity_and_video_columns(self):
        lesson = lesson_on_self()

        data = video_store.get_lesson_video_fields(lesson.id)

        self.assertEqual(data['id'], lesson.id)
        self.assertEqual(data['course_id'], lesson.course_id)
        self.assertEqual(data['title'], lesson.title)
        self.assertEqual(data['video_provider'], Lesson.PROVIDER_SELF)
        self.assertEqual(data['object_key'], lesson.object_key)
        self.assertEqual(set(data) - {'id', 'course_id', 'title'}, set(video_store.LESSON_VIDEO_FIELDS))

    def test_unrelated_lesson_columns_are_not_exposed(self):
        data = video_store.get_lesson_video_fields(LessonFactory().id)

        self.assertNotIn('status', data)
        self.assertNotIn('order', data)
        self.assertNotIn('created_at', data)

    def test_unknown_lesson_is_not_found(self):
        with self.assertRaises(NotFound):
            video_store.get_lesson_video_fields('not-a-uuid')

    def test_update_rejects_fields_outside_the_whitelist(self):
        lesson = LessonFactory()

        with self.assertRaises(InvalidInput):
            video_store.update_lesson_video_fields(lesson.id, {'title': 'Renamed', 'thumbnail_url': 'x'})

        lesson.refresh_from_db()
        self.assertNotEqual(lesson.title, 'Renamed')
        self.assertEqual(lesson.thumbnail_url, '')

    def test_update_writes_whitelisted_fields(self):
        lesson = LessonFactory()

        video_store.update_lesson_video_fields(lesson.id, {'thumbnail_url': 'https://img.test/t.jpg'})

        lesson.refresh_from_db()
        self.assertEqual(lesson.thumbnail_url, 'https://img.test/t.jpg')


class LessonsOnSelfTestCase(TestCase):
    def test_pages_through_self_hosted_lessons(self):
        course = CourseFactory()
        lessons = [lesson_on_self(course=course) for _ in range(5)]

        first = video_store.list_lessons_on_self(page=1, page_size=2)
        last = video_store.list_lessons_on_self(page=3, page_size=2)

        self.assertEqual(first['total'], 5)
        self.assertEqual(first['page'], 1)
        self.assertEqual(first['page_size'], 2)
        self.assertEqual(len(first['results']), 2)
        self.assertEqual(len(last['results']), 1)

        seen = set()
        for page in (1, 2, 3):
            seen.update(lesson.id for lesson in video_store.list_lessons_on_self(page=page, page_size=2)['results'])
        self.assertEqual(seen, {lesson.id for lesson in lessons})

    def test_page_past_the_end_is_empty(self):
        lesson_on_self()

        result = video_store.list_lessons_on_self(page=4, page_size=2)

        self.assertEqual(result['results'], [])
        self.assertEqual(result['total'], 1)

    def test_course_filter(self):
        wanted = lesson_on_self()
        lesson_on_self()

        result = video_store.list_lessons_on_self({'course_id': wanted.course_id})

        self.assertEqual([lesson.id for lesson in result['results']], [wanted.id])

    def test_lesson_ids_filter(self):
        first, second, _ = lesson_on_self(), lesson_on_self(), lesson_on_self()

        result = video_store.list_lessons_on_self({'lesson_ids': [first.id, second.id]})

        self.assertEqual({lesson.id for lesson in result['results']}, {first.id, second.id})
        self.assertEqual(result['total'], 2)

    def test_lessons_without_video_are_skipped(self):
        LessonFactory()

        self.assertEqual(video_store.list_lessons_on_self()['total'], 0)

    def test_managed_lessons_are_excluded(self):
        remaining = lesson_on_self()
        with_asset = lesson_on_self()
        Lesson.objects.filter(pk=with_asset.pk).update(managed_asset_id='asset-1')
        in_flight = lesson_on_self()
        Lesson.objects.filter(pk=in_flight.pk).update(
            video_provider=Lesson.PROVIDER_MANAGED, managed_status='preparing', managed_upload_id='up-1',
        )
        errored = lesson_on_self()
        Lesson.objects.filter(pk=errored.pk).update(
            video_provider=Lesson.PROVIDER_MANAGED, managed_status='errored',
        )

        result = video_store.list_lessons_on_self()

        self.assertEqual({lesson.id for lesson in result['results']}, {remaining.id, errored.id})


class ManagedStateOrderingTestCase(TestCase):
    def setUp(self):
        self.lesson = LessonFactory()
        video_store.start_managed_upload(self.lesson.id, 'up-1')

    def test_error_after_ready_is_ignored(self):
        video_store.apply_managed_state(self.lesson.id, status='ready', asset_id='asset-1', playback_id='P')

        lesson, changed = video_store.apply_managed_state(
            self.lesson.id, status='errored', asset_id='asset-1', error={'messages': ['late']},
        )

        self.assertFalse(changed)
        self.assertEqual(lesson.managed_status, 'ready')
        self.assertEqual(lesson.managed_playback_id, 'P')
        self.assertIsNone(lesson.managed_error)

    def test_ready_after_error_replaces_the_error(self):
        video_store.apply_managed_state(
            self.lesson.id, status='errored', asset_id='asset-1', error={'messages': ['transient']},
        )

        lesson, changed = video_store.apply_managed_state(
            self.lesson.id, status='ready', asset_id='asset-1', playback_id='P',
        )

        self.assertTrue(changed)
        self.assertEqual(lesson.managed_status, 'ready')
        self.assertEqual(lesson.video_provider, Lesson.PROVIDER_MANAGED)
        self.assertIsNone(lesson.managed_error)

    def test_processing_after_error_is_ignored(self):
        video_store.apply_managed_state(self.lesson.id, status='errored', asset_id='asset-1')

        lesson, changed = video_store.apply_managed_state(self.lesson.id, status='processing', asset_id='asset-1')

        self.assertFalse(changed)
        self.assertEqual(lesson.managed_status, 'errored')

    def test_unknown_status_is_rejected(self):
        with self.assertRaises(InvalidInput):
            video_store.apply_managed_state(self.lesson.id, status='finished')
