"""
Authentication tasks for EduStream Backend
"""

from celery import shared_task

from services import access_guard


@shared_task
def cleanup_access_logs_task(retention_days=None):
    """Delete access logs past the retention window"""
    return {'deleted_count': access_guard.cleanup_old_logs(retention_days)}
