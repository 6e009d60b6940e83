"""
Progress broadcasting service for EduStream Backend
Fans transcoding and migration progress out to in-process subscribers
and to Channels groups consumed by websocket clients
"""

import logging
import threading

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.utils import timezone

logger = logging.getLogger(__name__)

EVENT_TYPES = ('progress', 'complete', 'failed')
DASHBOARD_BROADCAST = '*'
DASHBOARD_BROADCAST_GROUP = 'dashboard_broadcast'


def lesson_key(lesson_id):
    return f"lesson:{lesson_id}"


def dashboard_key(user_id):
    return f"dashboard:{user_id}"


def lesson_group(lesson_id):
    return f"video_progress_{lesson_id}"


def dashboard_group(user_id):
    if user_id in (None, DASHBOARD_BROADCAST):
        return DASHBOARD_BROADCAST_GROUP
    return f"dashboard_{user_id}"


class ProgressBus:
    """Process-wide progress publisher"""

    def __init__(self, channel_layer=None):
        self._subscribers = {}
        self._lock = threading.Lock()
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    def subscribe(self, key, callback):
        """Register a local callback; returns a function that removes it"""
        with self._lock:
            self._subscribers.setdefault(key, []).append(callback)
        return lambda: self.unsubscribe(key, callback)

    def unsubscribe(self, key, callback):
        with self._lock:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(key, None)

    def subscriber_count(self, key):
        with self._lock:
            return len(self._subscribers.get(key, []))

    def publish(self, lesson_id, event):
        """Send a progress event for a lesson; unknown event types are dropped"""
        if not isinstance(event, dict) or event.get('type') not in EVENT_TYPES:
            logger.debug(f"Dropping progress event with unknown type for lesson {lesson_id}")
            return False

        message = dict(event)
        message['lessonId'] = str(lesson_id)
        message.setdefault('timestamp', timezone.now().isoformat())

        self._notify_local(lesson_key(lesson_id), message)
        self._send_group(lesson_group(lesson_id), 'video.progress', message)
        return True

    def publish_dashboard(self, user_id, update_type, payload):
        """Send a dashboard update to one user, or to everyone when user_id is None or '*'"""
        message = {
            'type': update_type,
            'data': payload,
            'timestamp': timezone.now().isoformat(),
        }
        target = DASHBOARD_BROADCAST if user_id in (None, DASHBOARD_BROADCAST) else str(user_id)

        self._notify_local(dashboard_key(target), message)
        self._send_group(dashboard_group(target), 'dashboard.update', message)
        return True

    def _notify_local(self, key, message):
        with self._lock:
            callbacks = list(self._subscribers.get(key, []))

        for callback in callbacks:
            try:
                callback(message)
            except Exception as e:
                logger.error(f"Progress subscriber for {key} failed: {str(e)}")

    def _send_group(self, group, handler, message):
        try:
            layer = self.channel_layer
            if layer is None:
                return
            async_to_sync(layer.group_send)(group, {'type': handler, 'message': message})
        except Exception as e:
            logger.warning(f"Could not deliver progress to group {group}: {str(e)}")


progress_bus = ProgressBus()
