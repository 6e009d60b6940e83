"""
Video analytics service for EduStream Backend
Ingests view sessions and computes lesson, course, teacher and platform rollups
"""

import json
import logging
import threading
import time
from collections import OrderedDict
from datetime import timedelta, timezone as dt_timezone

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError
from django.db.models import Avg, Count, Q, Sum
from django.db.models.functions import TruncDate
from django.utils import timezone

from apps.analytics.models import ViewSession
from apps.courses.models import Course, Lesson, UserLessonProgress
from core.exceptions import EduStreamBaseException, InvalidInput, NotFound

logger = logging.getLogger(__name__)

TIMEFRAME_UNITS = ('minutes', 'hours', 'days', 'weeks')

SESSION_FIELDS = (
    'watch_time_seconds',
    'video_duration_seconds',
    'completion_percentage',
    'playback_progress',
    'device_type',
    'browser',
    'os',
    'country',
    'rebuffer_count',
    'rebuffer_duration_ms',
    'session_started_at',
    'session_ended_at',
)

# Fields refreshed when a known external view is reported again
SESSION_UPDATE_FIELDS = (
    'watch_time_seconds',
    'completion_percentage',
    'playback_progress',
    'session_ended_at',
    'rebuffer_count',
    'rebuffer_duration_ms',
)


def parse_timeframe(timeframe):
    """Parse ``"<n>:<unit>"`` into a timedelta"""
    try:
        amount, unit = str(timeframe).split(':')
        amount = int(amount)
    except ValueError:
        raise InvalidInput(f"Invalid timeframe: {timeframe!r}")

    if amount <= 0 or unit not in TIMEFRAME_UNITS:
        raise InvalidInput(f"Invalid timeframe: {timeframe!r}")
    return timedelta(**{unit: amount})


def _clamp_percentage(value):
    return max(0.0, min(100.0, float(value or 0)))


def empty_summary():
    return {
        'totalViews': 0,
        'uniqueViewers': 0,
        'totalWatchTime': 0,
        'averageWatchTime': 0,
        'averageCompletionRate': 0,
        'completedViews': 0,
        'completionRate': 0,
        'totalRebuffers': 0,
        'averageRebufferDuration': 0,
    }


def summarize_sessions(sessions):
    """Aggregate a ViewSession queryset into a summary dict"""
    data = sessions.aggregate(
        total_views=Count('id'),
        unique_viewers=Count('user', distinct=True),
        total_watch_time=Sum('watch_time_seconds'),
        average_watch_time=Avg('watch_time_seconds'),
        average_completion=Avg('completion_percentage'),
        completed_views=Count('id', filter=Q(session_completed=True)),
        total_rebuffers=Sum('rebuffer_count'),
        average_rebuffer=Avg('rebuffer_duration_ms'),
    )
    total_views = data['total_views'] or 0
    completed = data['completed_views'] or 0
    return {
        'totalViews': total_views,
        'uniqueViewers': data['unique_viewers'] or 0,
        'totalWatchTime': round(data['total_watch_time'] or 0, 2),
        'averageWatchTime': round(data['average_watch_time'] or 0, 2),
        'averageCompletionRate': round(data['average_completion'] or 0, 2),
        'completedViews': completed,
        'completionRate': round(completed / total_views * 100, 2) if total_views else 0,
        'totalRebuffers': data['total_rebuffers'] or 0,
        'averageRebufferDuration': round(data['average_rebuffer'] or 0, 2),
    }


def daily_trend(sessions):
    rows = (
        sessions.annotate(day=TruncDate('session_started_at', tzinfo=dt_timezone.utc))
        .values('day')
        .annotate(views=Count('id'), watch_time=Sum('watch_time_seconds'))
        .order_by('day')
    )
    return [
        {'date': row['day'].isoformat(), 'views': row['views'], 'watchTime': round(row['watch_time'] or 0, 2)}
        for row in rows
    ]


def _bucket_counts(positions, duration, segments):
    segment_duration = duration / segments
    counts = [0] * segments
    for percent in positions:
        position = min(duration, max(0.0, float(percent or 0) * duration / 100))
        index = min(int(position // segment_duration), segments - 1)
        counts[index] += 1

    return [
        {
            'startTime': round(index * segment_duration, 2),
            'endTime': round((index + 1) * segment_duration, 2),
            'watchCount': count,
        }
        for index, count in enumerate(counts)
    ]


class AnalyticsCache:
    """Bounded LRU cache whose entries expire after ``ttl`` seconds"""

    def __init__(self, max_entries=100, ttl=300, clock=time.monotonic):
        self.max_entries = max_entries
        self.ttl = ttl
        self.clock = clock
        self.hits = 0
        self.misses = 0
        self._entries = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def make_key(lesson_id, options=None):
        return f"analytics:{lesson_id}:{json.dumps(options or {}, sort_keys=True, default=str)}"

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            stored_at, value = entry
            if self.clock() - stored_at >= self.ttl:
                del self._entries[key]
                self.misses += 1
                return None

            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def set(self, key, value):
        with self._lock:
            self._entries[key] = (self.clock(), value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self, lesson_id=None):
        """Drop every entry, or only those tied to one lesson; returns the number removed"""
        with self._lock:
            if lesson_id is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed

            prefix = f"analytics:{lesson_id}:"
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def stats(self):
        with self._lock:
            return {'entries': len(self._entries), 'hits': self.hits, 'misses': self.misses,
                    'max_entries': self.max_entries, 'ttl': self.ttl}

    def __len__(self):
        with self._lock:
            return len(self._entries)


class AnalyticsEngine:
    """Lesson, course, teacher and platform analytics"""

    def __init__(self, cache=None):
        self.cache = cache if cache is not None else AnalyticsCache(
            max_entries=getattr(settings, 'ANALYTICS_CACHE_MAX_ENTRIES', 100),
            ttl=getattr(settings, 'ANALYTICS_CACHE_TTL', 300),
        )

    def record_view(self, session):
        """Insert a view session, or update the one sharing its external view id"""
        lesson_id = session.get('lesson_id')
        if not lesson_id:
            raise InvalidInput("lesson_id is required")
        if not Lesson.objects.filter(pk=lesson_id).exists():
            raise NotFound(f"Lesson {lesson_id} not found")

        values = {name: session[name] for name in SESSION_FIELDS if session.get(name) is not None}
        for name in ('completion_percentage', 'playback_progress'):
            if name in values:
                values[name] = _clamp_percentage(values[name])

        external_view_id = session.get('external_view_id')
        view = None
        if external_view_id:
            view = ViewSession.objects.filter(external_view_id=external_view_id).first()

        if view is not None:
            for name in SESSION_UPDATE_FIELDS:
                if name in values:
                    setattr(view, name, values[name])
            if view.session_ended_at is None:
                view.session_ended_at = timezone.now()
            view.save()
        else:
            values.setdefault('session_started_at', timezone.now())
            view = ViewSession.objects.create(
                lesson_id=lesson_id,
                user_id=session.get('user_id'),
                external_view_id=external_view_id or None,
                **values,
            )

        self.cache.clear(lesson_id)
        return view

    def get_cached_lesson_analytics(self, lesson_id, timeframe='7:days'):
        return self.cache.get(self.cache.make_key(lesson_id, {'timeframe': timeframe}))

    def clear_cache(self, lesson_id=None):
        removed = self.cache.clear(lesson_id)
        logger.info(f"Cleared {removed} analytics cache entries" + (f" for lesson {lesson_id}" if lesson_id else ''))
        return removed

    def lesson_analytics(self, lesson_id, timeframe='7:days', force_refresh=False):
        """Summary, devices, geography and trend for one lesson"""
        window = parse_timeframe(timeframe)
        key = self.cache.make_key(lesson_id, {'timeframe': timeframe})

        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return {**cached, 'source': 'cache'}

        since = timezone.now() - window
        result = {
            'lesson_id': str(lesson_id),
            'timeframe': timeframe,
            'summary': empty_summary(),
            'devices': [],
            'geography': [],
            'trend': [],
            'source': 'database',
            'lastSynced': timezone.now().isoformat(),
        }

        try:
            sessions = ViewSession.objects.filter(lesson_id=lesson_id, session_started_at__gte=since)
            result['summary'] = summarize_sessions(sessions)
            result['devices'] = [
                {'device': row['device_type'], 'views': row['views']}
                for row in sessions.exclude(device_type__isnull=True).exclude(device_type='')
                .values('device_type').annotate(views=Count('id')).order_by('-views', 'device_type')
            ]
            result['geography'] = [
                {'country': row['country'], 'views': row['views']}
                for row in sessions.exclude(country__isnull=True).exclude(country='')
                .values('country').annotate(views=Count('id')).order_by('-views', 'country')[:10]
            ]
            result['trend'] = daily_trend(sessions)
        except DatabaseError as e:
            logger.warning(f"Analytics unavailable for lesson {lesson_id}: {str(e)}")
            return result

        self.cache.set(key, result)
        return result

    def bulk_lesson_analytics(self, lesson_ids, timeframe='7:days'):
        results = {}
        for lesson_id in lesson_ids:
            try:
                results[str(lesson_id)] = self.lesson_analytics(lesson_id, timeframe)
            except EduStreamBaseException as e:
                logger.error(f"Analytics failed for lesson {lesson_id}: {str(e)}")
                results[str(lesson_id)] = {
                    'lesson_id': str(lesson_id),
                    'timeframe': timeframe,
                    'summary': empty_summary(),
                    'error': str(e),
                }
        return results

    def lesson_heatmap(self, lesson_id, segments=100):
        """Sessions per timeline segment, bucketed by furthest playback position"""
        lesson = self._get_lesson(lesson_id)
        duration = float(lesson.duration_seconds or 0)
        if duration <= 0 or segments <= 0:
            return {'segments': [], 'total': 0, 'duration': 0}

        try:
            positions = list(
                ViewSession.objects.filter(lesson_id=lesson.id).values_list('playback_progress', flat=True)
            )
        except DatabaseError as e:
            logger.warning(f"Heatmap unavailable for lesson {lesson_id}: {str(e)}")
            return {'segments': [], 'total': 0, 'duration': duration}

        return {
            'segments': _bucket_counts(positions, duration, segments),
            'total': len(positions),
            'duration': duration,
        }

    def engagement_heatmap(self, lesson_id, segments=20):
        """Same buckets as the heatmap, computed from recorded lesson progress"""
        lesson = self._get_lesson(lesson_id)
        duration = float(lesson.duration_seconds or 0)
        if duration <= 0 or segments <= 0:
            return {'segments': [], 'total': 0, 'duration': 0}

        positions = list(
            UserLessonProgress.objects.filter(lesson_id=lesson.id).values_list('progress', flat=True)
        )
        return {
            'segments': _bucket_counts(positions, duration, segments),
            'total': len(positions),
            'duration': duration,
        }

    def course_analytics(self, course_id):
        """Per-lesson summaries and totals for a course"""
        try:
            course = Course.objects.get(pk=course_id)
        except (Course.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound(f"Course {course_id} not found")

        lessons = list(Lesson.objects.filter(course=course).order_by('order', 'created_at'))
        lesson_summaries = []
        for lesson in lessons:
            summary = summarize_sessions(ViewSession.objects.filter(lesson=lesson))
            lesson_summaries.append({
                'lesson_id': str(lesson.id),
                'title': lesson.title,
                'order': lesson.order,
                'summary': summary,
            })

        with_views = [item['summary'] for item in lesson_summaries if item['summary']['totalViews']]
        unique_viewers = ViewSession.objects.filter(lesson__course=course).aggregate(
            users=Count('user', distinct=True)
        )['users'] or 0

        totals = {
            'totalLessons': len(lessons),
            'lessonsWithViews': len(with_views),
            'totalViews': sum(s['totalViews'] for s in with_views),
            'uniqueViewers': unique_viewers,
            'totalWatchTime': round(sum(s['totalWatchTime'] for s in with_views), 2),
            'averageWatchTime': round(sum(s['averageWatchTime'] for s in with_views) / len(with_views), 2)
            if with_views else 0,
            'averageCompletionRate': round(sum(s['averageCompletionRate'] for s in with_views) / len(with_views), 2)
            if with_views else 0,
            'engagementRate': round(len(with_views) / len(lessons) * 100, 2) if lessons else 0,
        }
        return {
            'course_id': str(course.id),
            'title': course.title,
            'totals': totals,
            'lessons': lesson_summaries,
        }

    def teacher_dashboard(self, teacher_id, limit=10):
        """Totals, top lessons and last week's activity across a teacher's courses"""
        courses = list(Course.objects.filter(created_by_id=teacher_id).order_by('title'))
        lessons = Lesson.objects.filter(course__created_by_id=teacher_id)
        dashboard = {
            'courses': [{'id': str(c.id), 'title': c.title} for c in courses],
            'totalLessons': lessons.count(),
            'totalViews': 0,
            'uniqueViewers': 0,
            'totalWatchTime': 0,
            'topLessons': [],
            'recentActivity': [],
            'source': 'sessions',
        }

        try:
            sessions = ViewSession.objects.filter(lesson__course__created_by_id=teacher_id)
            summary = summarize_sessions(sessions)
        except DatabaseError as e:
            logger.warning(f"View sessions unavailable for teacher dashboard: {str(e)}")
            summary = empty_summary()
            sessions = None

        if summary['totalViews'] == 0:
            return self._progress_dashboard(dashboard, lessons, limit)

        dashboard['totalViews'] = summary['totalViews']
        dashboard['uniqueViewers'] = summary['uniqueViewers']
        dashboard['totalWatchTime'] = summary['totalWatchTime']
        dashboard['topLessons'] = [
            {'lesson_id': str(row['id']), 'title': row['title'], 'views': row['views'],
             'watchTime': round(row['watch_time'] or 0, 2)}
            for row in lessons.annotate(
                views=Count('view_sessions'),
                watch_time=Sum('view_sessions__watch_time_seconds'),
            ).filter(views__gt=0).order_by('-views', 'title').values('id', 'title', 'views', 'watch_time')[:limit]
        ]

        since = timezone.now() - timedelta(days=7)
        trend = {row['date']: row for row in daily_trend(sessions.filter(session_started_at__gte=since))}
        dashboard['recentActivity'] = self._fill_days(trend, days=7)
        return dashboard

    def _progress_dashboard(self, dashboard, lessons, limit):
        """Dashboard built from lesson progress when no view sessions exist"""
        progress = UserLessonProgress.objects.filter(lesson__in=lessons, progress__gt=0)
        totals = progress.aggregate(
            views=Count('id'),
            users=Count('user', distinct=True),
            watch_time=Sum('watch_time_seconds'),
        )
        dashboard.update({
            'totalViews': totals['views'] or 0,
            'uniqueViewers': totals['users'] or 0,
            'totalWatchTime': round(totals['watch_time'] or 0, 2),
            'source': 'progress',
        })
        dashboard['topLessons'] = [
            {'lesson_id': str(row['id']), 'title': row['title'], 'views': row['viewers'],
             'watchTime': round(row['watch_time'] or 0, 2)}
            for row in lessons.annotate(
                viewers=Count('progress_records__user', filter=Q(progress_records__progress__gt=0), distinct=True),
                watch_time=Sum('progress_records__watch_time_seconds'),
            ).filter(viewers__gt=0).order_by('-viewers', 'title').values('id', 'title', 'viewers', 'watch_time')[:limit]
        ]

        since = timezone.now() - timedelta(days=7)
        rows = (
            progress.filter(updated_at__gte=since)
            .annotate(day=TruncDate('updated_at', tzinfo=dt_timezone.utc))
            .values('day')
            .annotate(views=Count('id'), watch_time=Sum('watch_time_seconds'))
        )
        trend = {
            row['day'].isoformat(): {'date': row['day'].isoformat(), 'views': row['views'],
                                     'watchTime': round(row['watch_time'] or 0, 2)}
            for row in rows
        }
        dashboard['recentActivity'] = self._fill_days(trend, days=7)
        return dashboard

    @staticmethod
    def _fill_days(trend, days):
        today = timezone.now().astimezone(dt_timezone.utc).date()
        activity = []
        for offset in range(days - 1, -1, -1):
            day = (today - timedelta(days=offset)).isoformat()
            activity.append(trend.get(day, {'date': day, 'views': 0, 'watchTime': 0}))
        return activity

    def platform_analytics(self, days=30):
        """Platform-wide totals and daily trend"""
        result = {
            'days': days,
            'summary': empty_summary(),
            'lessonsWithViews': 0,
            'trend': [],
        }
        try:
            sessions = ViewSession.objects.filter(session_started_at__gte=timezone.now() - timedelta(days=days))
            result['summary'] = summarize_sessions(sessions)
            result['lessonsWithViews'] = sessions.values('lesson').distinct().count()
            result['trend'] = daily_trend(sessions)
        except DatabaseError as e:
            logger.warning(f"Platform analytics unavailable: {str(e)}")
        return result

    def cleanup_old_sessions(self, retention_days=None):
        """Delete sessions older than the retention window; returns the number deleted"""
        retention_days = retention_days or getattr(settings, 'ANALYTICS_RETENTION_DAYS', 90)
        cutoff = timezone.now() - timedelta(days=retention_days)
        deleted, _ = ViewSession.objects.filter(created_at__lt=cutoff).delete()
        if deleted:
            self.cache.clear()
        logger.info(f"Deleted {deleted} view sessions older than {retention_days} days")
        return deleted

    @staticmethod
    def _get_lesson(lesson_id):
        try:
            return Lesson.objects.get(pk=lesson_id)
        except (Lesson.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound(f"Lesson {lesson_id} not found")


analytics_engine = AnalyticsEngine()
