"""
Video URLs for EduStream Backend
"""

from django.urls import path

from .views import (
    AssetRetryView,
    LessonDownloadView,
    LessonPlaybackView,
    LessonVideoDeleteView,
    LessonVideoUploadView,
    ManagedRecoveryView,
    ManagedUploadView,
    MigrateLessonView,
    MigrationBatchView,
    MigrationCandidatesView,
    MigrationEligibilityView,
    MigrationStatusView,
    ProcessingStatusView,
    ProviderStatisticsView,
    RollbackMigrationView,
    VerifyMigrationView,
    provider_webhook,
)

app_name = 'videos'

urlpatterns = [
    # Lesson video lifecycle
    path('lessons/<uuid:lesson_id>/upload/', LessonVideoUploadView.as_view(), name='upload'),
    path('lessons/<uuid:lesson_id>/managed-upload/', ManagedUploadView.as_view(), name='managed_upload'),
    path('lessons/<uuid:lesson_id>/video/', LessonVideoDeleteView.as_view(), name='delete_video'),
    path('lessons/<uuid:lesson_id>/playback/', LessonPlaybackView.as_view(), name='playback'),
    path('lessons/<uuid:lesson_id>/download/', LessonDownloadView.as_view(), name='download'),
    path('lessons/<uuid:lesson_id>/processing-status/', ProcessingStatusView.as_view(), name='processing_status'),
    path('assets/<uuid:asset_id>/retry/', AssetRetryView.as_view(), name='asset_retry'),
    path('lessons/<uuid:lesson_id>/managed-recovery/', ManagedRecoveryView.as_view(), name='managed_recovery'),

    # Provider webhooks
    path('webhooks/provider/', provider_webhook, name='provider_webhook'),

    # Migration
    path('migration/batch/', MigrationBatchView.as_view(), name='migration_batch'),
    path('migration/status/', MigrationStatusView.as_view(), name='migration_status'),
    path('migration/candidates/', MigrationCandidatesView.as_view(), name='migration_candidates'),
    path('migration/lessons/<uuid:lesson_id>/', MigrateLessonView.as_view(), name='migrate_lesson'),
    path('migration/lessons/<uuid:lesson_id>/verify/', VerifyMigrationView.as_view(), name='verify_migration'),
    path('migration/lessons/<uuid:lesson_id>/rollback/', RollbackMigrationView.as_view(), name='rollback_migration'),
    path('migration/lessons/<uuid:lesson_id>/eligibility/', MigrationEligibilityView.as_view(),
         name='migration_eligibility'),

    path('providers/statistics/', ProviderStatisticsView.as_view(), name='provider_statistics'),
]
