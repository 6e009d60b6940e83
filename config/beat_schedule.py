"""
Celery beat schedule for periodic tasks
"""

from celery.schedules import crontab

BEAT_SCHEDULE = {
    # Pull managed provider state for lessons still in flight
    'sync-managed-statuses': {
        'task': 'apps.videos.tasks.sync_managed_statuses_task',
        'schedule': crontab(minute='*/5'),  # Every 5 minutes
    },

    # Refresh analytics for lessons playing from the managed provider
    'sync-managed-analytics': {
        'task': 'apps.analytics.tasks.sync_managed_analytics_task',
        'schedule': crontab(minute='*/15'),  # Every 15 minutes
    },

    # Clean up old view sessions
    'cleanup-old-analytics': {
        'task': 'apps.analytics.tasks.cleanup_old_analytics_task',
        'schedule': crontab(hour=2, minute=0),  # 2 AM daily
    },

    # Clean up old access logs
    'cleanup-access-logs': {
        'task': 'apps.authentication.tasks.cleanup_access_logs_task',
        'schedule': crontab(hour=3, minute=0),  # 3 AM daily
    },

    # Requeue lost retries and fail stuck processing
    'retry-failed-processing': {
        'task': 'apps.videos.tasks.retry_failed_processing_task',
        'schedule': crontab(minute=0),  # Every hour
    },
}
