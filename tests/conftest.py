"""Shared pytest fixtures for EduStream backend tests."""

from unittest.mock import MagicMock

import pytest
from rest_framework.test import APIClient


@pytest.fixture
def api_client() -> APIClient:
    """Return a DRF API client instance."""
    return APIClient()


@pytest.fixture
def user_factory():
    """Factory wrapper to create users with sensible defaults."""

    def _create_user(**kwargs):
        from tests.factories import UserFactory

        return UserFactory(**kwargs)

    return _create_user


@pytest.fixture
def teacher(user_factory):
    return user_factory(role='teacher')


@pytest.fixture
def admin_user(user_factory):
    return user_factory(role='admin')


@pytest.fixture
def course_factory():
    def _create_course(**kwargs):
        from tests.factories import CourseFactory

        return CourseFactory(**kwargs)

    return _create_course


@pytest.fixture
def lesson_factory():
    """Factory wrapper to create lessons (and their course) for tests."""

    def _create_lesson(**kwargs):
        from tests.factories import LessonFactory

        return LessonFactory(**kwargs)

    return _create_lesson


@pytest.fixture
def enrollment_factory():
    def _create_enrollment(**kwargs):
        from tests.factories import EnrollmentFactory

        return EnrollmentFactory(**kwargs)

    return _create_enrollment


@pytest.fixture
def video_asset_factory():
    def _create_asset(**kwargs):
        from tests.factories import VideoAssetFactory

        return VideoAssetFactory(**kwargs)

    return _create_asset


@pytest.fixture
def view_session_factory():
    def _create_session(**kwargs):
        from tests.factories import ViewSessionFactory

        return ViewSessionFactory(**kwargs)

    return _create_session


@pytest.fixture
def authenticated_client(api_client, user_factory):
    """Return an authenticated API client and the associated user."""
    user = user_factory()
    api_client.force_authenticate(user=user)
    return api_client, user


@pytest.fixture
def teacher_client(api_client, teacher):
    api_client.force_authenticate(user=teacher)
    return api_client, teacher


@pytest.fixture
def admin_client(api_client, admin_user):
    api_client.force_authenticate(user=admin_user)
    return api_client, admin_user


@pytest.fixture
def mock_store():
    """ObjectStore double with deterministic URLs."""
    store = MagicMock(name='ObjectStore')
    store.bucket_name = 'edustream-test-videos'
    store.public_url.side_effect = lambda key: f"https://cdn.test/{key}"
    store.put.side_effect = lambda key, data, content_type='application/octet-stream': f"https://cdn.test/{key}"
    store.put_file.side_effect = lambda key, path, content_type='application/octet-stream': f"https://cdn.test/{key}"
    store.signed_stream_url.side_effect = lambda key, ttl_seconds=3600: f"https://signed.test/{key}?ttl={ttl_seconds}"
    store.delete_prefix.return_value = 0
    return store


@pytest.fixture(autouse=True)
def clear_analytics_cache():
    from services.analytics_engine import analytics_engine

    analytics_engine.clear_cache()
    yield
    analytics_engine.clear_cache()
