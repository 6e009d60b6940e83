"""
Access control service for EduStream Backend
Decides who may stream or download a lesson and keeps the access audit trail
"""

import logging
from dataclasses import dataclass
from datetime import timedelta, timezone as dt_timezone

from django.conf import settings
from django.core.paginator import EmptyPage, Paginator
from django.db import DatabaseError, transaction
from django.db.models import Count, Max
from django.db.models.functions import TruncDate
from django.utils import timezone

from apps.authentication.models import AccessLog
from apps.courses.models import Enrollment
from core.exceptions import InvalidInput, PermissionDenied
from core.utils import get_client_ip, get_user_agent

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security_audit')

ACTION_PLAYBACK = 'playback'
ACTION_DOWNLOAD = 'download'
ACTIONS = (ACTION_PLAYBACK, ACTION_DOWNLOAD)

DENIAL_GROUPINGS = ('resource', 'user_role', 'action', 'day')


@dataclass(frozen=True)
class AccessDecision:
    granted: bool
    reason: str

    def __bool__(self):
        return self.granted


def _is_admin(user):
    return getattr(user, 'role', None) == 'admin' or user.is_staff or user.is_superuser


def _resource_for(lesson):
    return f"lesson:{lesson.id}"


def check_access(user, lesson, action=ACTION_PLAYBACK, request=None):
    """Whether ``user`` may perform ``action`` on a lesson's video"""
    if action not in ACTIONS:
        raise InvalidInput(f"Unknown access action: {action}")

    if user is None or not user.is_authenticated:
        decision = AccessDecision(False, 'authentication_required')
    elif lesson.course.created_by_id == user.id:
        decision = AccessDecision(True, 'course_owner')
    else:
        enrolled = Enrollment.objects.filter(user=user, course_id=lesson.course_id, status='active').exists()
        if enrolled and (action == ACTION_PLAYBACK or lesson.allow_download):
            decision = AccessDecision(True, 'enrolled')
        elif _is_admin(user):
            decision = AccessDecision(True, 'platform_admin')
        elif enrolled:
            decision = AccessDecision(False, 'download_not_allowed')
        else:
            decision = AccessDecision(False, 'not_enrolled')

    if decision.granted:
        if action == ACTION_DOWNLOAD:
            log_access_granted(user, _resource_for(lesson), action, request, metadata={'reason': decision.reason})
    else:
        log_access_denial(
            user,
            _resource_for(lesson),
            action,
            request,
            required_role='enrolled_student' if action == ACTION_PLAYBACK else 'enrolled_student_with_download',
            metadata={'reason': decision.reason, 'course_id': str(lesson.course_id)},
        )
    return decision


def require_access(user, lesson, action=ACTION_PLAYBACK, request=None):
    decision = check_access(user, lesson, action, request)
    if not decision.granted:
        raise PermissionDenied(
            f"You do not have {action} access to this lesson",
            details={'reason': decision.reason},
        )
    return decision


def _write_log(user, resource, action, granted, request, required_role='', metadata=None):
    authenticated = user is not None and user.is_authenticated
    try:
        with transaction.atomic():
            return AccessLog.objects.create(
                user=user if authenticated else None,
                user_role=getattr(user, 'role', '') if authenticated else 'anonymous',
                resource=resource,
                required_role=required_role,
                action=action,
                access_granted=granted,
                ip_address=get_client_ip(request),
                user_agent=get_user_agent(request),
                metadata=metadata or {},
            )
    except DatabaseError as e:
        logger.error(f"Failed to write access log for {resource}: {str(e)}")
        return None


def log_access_denial(user, resource, action, request=None, required_role='', metadata=None):
    user_label = getattr(user, 'email', None) or 'anonymous'
    security_logger.warning(
        f"ACCESS DENIED user={user_label} action={action} resource={resource} "
        f"ip={get_client_ip(request)} reason={(metadata or {}).get('reason')}"
    )
    return _write_log(user, resource, action, False, request, required_role, metadata)


def log_access_granted(user, resource, action, request=None, metadata=None):
    return _write_log(user, resource, action, True, request, metadata=metadata)


def _serialize_log(log):
    return {
        'id': str(log.id),
        'user_id': str(log.user_id) if log.user_id else None,
        'user_role': log.user_role,
        'resource': log.resource,
        'required_role': log.required_role,
        'action': log.action,
        'access_granted': log.access_granted,
        'ip_address': log.ip_address,
        'user_agent': log.user_agent,
        'metadata': log.metadata,
        'created_at': log.created_at.isoformat(),
    }


def get_access_logs(filters=None, page=1, page_size=50):
    """Filtered, paginated access log entries, newest first"""
    filters = filters or {}
    queryset = AccessLog.objects.all()

    if filters.get('user_id'):
        queryset = queryset.filter(user_id=filters['user_id'])
    if filters.get('resource'):
        queryset = queryset.filter(resource=filters['resource'])
    if filters.get('action'):
        queryset = queryset.filter(action=filters['action'])
    if filters.get('access_granted') is not None:
        queryset = queryset.filter(access_granted=filters['access_granted'])
    if filters.get('since'):
        queryset = queryset.filter(created_at__gte=filters['since'])
    if filters.get('until'):
        queryset = queryset.filter(created_at__lte=filters['until'])

    paginator = Paginator(queryset.order_by('-created_at'), page_size)
    try:
        results = [_serialize_log(log) for log in paginator.page(page).object_list]
    except EmptyPage:
        results = []

    return {'results': results, 'total': paginator.count, 'page': page, 'page_size': page_size}


def get_access_denial_stats(group_by='resource', days=7):
    """Denial counts grouped by resource, role, action or day"""
    if group_by not in DENIAL_GROUPINGS:
        raise InvalidInput(f"Cannot group denials by {group_by}")

    denials = AccessLog.objects.filter(
        access_granted=False,
        created_at__gte=timezone.now() - timedelta(days=days),
    )
    if group_by == 'day':
        rows = (
            denials.annotate(key=TruncDate('created_at', tzinfo=dt_timezone.utc))
            .values('key').annotate(count=Count('id')).order_by('key')
        )
        return [{'key': row['key'].isoformat(), 'count': row['count']} for row in rows]

    rows = denials.values(group_by).annotate(count=Count('id')).order_by('-count', group_by)
    return [{'key': row[group_by], 'count': row['count']} for row in rows]


def get_suspicious_access_patterns(min_denials=10, window_hours=24):
    """Users with at least ``min_denials`` denials inside the window"""
    rows = (
        AccessLog.objects.filter(
            access_granted=False,
            user__isnull=False,
            created_at__gte=timezone.now() - timedelta(hours=window_hours),
        )
        .values('user', 'user_role')
        .annotate(
            denial_count=Count('id'),
            distinct_resources=Count('resource', distinct=True),
            last_attempt=Max('created_at'),
        )
        .filter(denial_count__gte=min_denials)
        .order_by('-denial_count')
    )
    return [
        {
            'user_id': str(row['user']),
            'user_role': row['user_role'],
            'denial_count': row['denial_count'],
            'distinct_resources': row['distinct_resources'],
            'last_attempt': row['last_attempt'].isoformat(),
        }
        for row in rows
    ]


def cleanup_old_logs(retention_days=None):
    """Delete access logs past the retention window; returns the number deleted"""
    retention_days = retention_days or getattr(settings, 'ACCESS_LOG_RETENTION_DAYS', 90)
    cutoff = timezone.now() - timedelta(days=retention_days)
    deleted, _ = AccessLog.objects.filter(created_at__lt=cutoff).delete()
    logger.info(f"Deleted {deleted} access logs older than {retention_days} days")
    return deleted
