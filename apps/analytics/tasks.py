"""
Analytics tasks for EduStream Backend
"""

import logging

from celery import shared_task

from services import reconciliation

logger = logging.getLogger(__name__)


@shared_task
def sync_managed_analytics_task():
    """Refresh analytics for lessons playing from the managed provider"""
    result = reconciliation.sync_managed_analytics()
    logger.info(f"Refreshed analytics for {result['refreshed']} lessons")
    return result


@shared_task
def cleanup_old_analytics_task(retention_days=None):
    """Clean up view sessions based on retention policy"""
    return reconciliation.cleanup_old_analytics(retention_days)
