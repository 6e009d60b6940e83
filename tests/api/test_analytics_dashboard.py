"""Analytics API smoke tests exercising shared fixtures."""

from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient


class AnalyticsDashboardTests(TestCase):
    """Exercise the analytics endpoints using factory-generated data."""

    client_class = APIClient

    def setUp(self):
        from services.analytics_engine import analytics_engine

        analytics_engine.clear_cache()
        self.addCleanup(analytics_engine.clear_cache)

    def test_student_records_a_view(self):
        from tests.factories import LessonFactory, UserFactory

        user = UserFactory()
        lesson = LessonFactory()
        self.client.force_authenticate(user=user)

        response = self.client.post(
            reverse("analytics:record_view"),
            {"lesson_id": str(lesson.id), "watch_time_seconds": 42, "completion_percentage": 93,
             "playback_progress": 93, "device_type": "mobile"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        payload = response.data["data"]
        self.assertEqual(payload["user"], user.id)
        self.assertTrue(payload["session_completed"])

    def test_view_for_unknown_lesson_is_not_found(self):
        from tests.factories import UserFactory

        self.client.force_authenticate(user=UserFactory())

        response = self.client.post(
            reverse("analytics:record_view"),
            {"lesson_id": "00000000-0000-0000-0000-000000000000"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_lesson_analytics_served_from_cache_on_second_call(self):
        from tests.factories import LessonFactory, ViewSessionFactory

        lesson = LessonFactory()
        ViewSessionFactory.create_batch(2, lesson=lesson)
        self.client.force_authenticate(user=lesson.course.created_by)
        url = reverse("analytics:lesson", args=[lesson.id])

        first = self.client.get(url)
        second = self.client.get(url)
        refreshed = self.client.get(url, {"refresh": "true"})

        self.assertEqual(first.data["data"]["source"], "database")
        self.assertEqual(second.data["data"]["source"], "cache")
        self.assertEqual(refreshed.data["data"]["source"], "database")
        self.assertEqual(first.data["data"]["summary"]["totalViews"], 2)

    def test_heatmap_segments_are_validated(self):
        from tests.factories import LessonFactory, ViewSessionFactory

        lesson = LessonFactory(duration_seconds=100)
        ViewSessionFactory(lesson=lesson, playback_progress=55)
        self.client.force_authenticate(user=lesson.course.created_by)
        url = reverse("analytics:lesson_heatmap", args=[lesson.id])

        response = self.client.get(url, {"segments": 10})
        invalid = self.client.get(url, {"segments": "lots"})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["data"]["segments"][5]["watchCount"], 1)
        self.assertEqual(invalid.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(invalid.data["kind"], "invalid_input")

    def test_teacher_dashboard_reports_recent_activity(self):
        from tests.factories import LessonFactory, ViewSessionFactory

        lesson = LessonFactory()
        ViewSessionFactory(lesson=lesson)
        self.client.force_authenticate(user=lesson.course.created_by)

        response = self.client.get(reverse("analytics:teacher_dashboard"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data["data"]
        self.assertEqual(data["totalViews"], 1)
        self.assertEqual(len(data["recentActivity"]), 7)

    def test_course_and_bulk_analytics(self):
        from tests.factories import LessonFactory, ViewSessionFactory

        lesson = LessonFactory()
        ViewSessionFactory(lesson=lesson)
        self.client.force_authenticate(user=lesson.course.created_by)

        course = self.client.get(reverse("analytics:course", args=[lesson.course_id]))
        bulk = self.client.post(reverse("analytics:bulk_lessons"), {"lesson_ids": [str(lesson.id)]}, format="json")

        self.assertEqual(course.data["data"]["totals"]["totalViews"], 1)
        self.assertIn(str(lesson.id), bulk.data["data"])

    def test_platform_analytics_and_cache_clear_are_admin_only(self):
        from tests.factories import LessonFactory, UserFactory

        lesson = LessonFactory()
        self.client.force_authenticate(user=lesson.course.created_by)
        self.assertEqual(self.client.get(reverse("analytics:platform")).status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=UserFactory(role="admin"))
        self.client.get(reverse("analytics:lesson", args=[lesson.id]))

        platform = self.client.get(reverse("analytics:platform"), {"days": 7})
        cleared = self.client.post(reverse("analytics:clear_cache"), {"lesson_id": str(lesson.id)}, format="json")

        self.assertEqual(platform.status_code, status.HTTP_200_OK)
        self.assertEqual(cleared.data["data"], {"removed": 1})
