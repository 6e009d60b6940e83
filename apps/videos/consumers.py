"""
WebSocket consumers for video processing progress
"""

import json
import logging
import uuid
from urllib.parse import parse_qs

from channels.generic.websocket import AsyncWebsocketConsumer
from django.utils import timezone

from services.progress_bus import (
    DASHBOARD_BROADCAST,
    DASHBOARD_BROADCAST_GROUP,
    EVENT_TYPES,
    dashboard_group,
    lesson_group,
)

logger = logging.getLogger(__name__)


def _is_admin(user):
    return getattr(user, 'role', None) == 'admin' or user.is_staff or user.is_superuser


class ProgressConsumer(AsyncWebsocketConsumer):
    """Streams transcoding, migration and dashboard updates to a client"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.user = None
        self.groups_joined = []

    async def connect(self):
        """Subscribe to a lesson's progress or to a dashboard"""
        params = parse_qs(self.scope.get('query_string', b'').decode('utf-8'))
        lesson_id = params.get('lessonId', [None])[0]
        subscription = params.get('type', [None])[0]
        target_user = params.get('userId', [None])[0]
        self.user = self.scope.get('user')

        if self.user is None or not self.user.is_authenticated:
            await self.close(code=4001)
            return

        if subscription == 'dashboard':
            target_user = target_user or str(self.user.id)
            if target_user != str(self.user.id) and not _is_admin(self.user):
                await self.close(code=4003)
                return
            groups = [DASHBOARD_BROADCAST_GROUP]
            if target_user != DASHBOARD_BROADCAST:
                groups.insert(0, dashboard_group(target_user))
        elif lesson_id:
            try:
                lesson_id = str(uuid.UUID(lesson_id))
            except ValueError:
                await self.close(code=4000)
                return
            groups = [lesson_group(lesson_id)]
        else:
            await self.close(code=4000)
            return

        await self.accept()
        for group in groups:
            await self.channel_layer.group_add(group, self.channel_name)
        self.groups_joined = groups

        await self.send(text_data=json.dumps({
            'type': 'subscribed',
            'groups': groups,
            'timestamp': timezone.now().isoformat(),
        }))
        logger.info(f"User {self.user.id} subscribed to {', '.join(groups)}")

    async def disconnect(self, close_code):
        for group in self.groups_joined:
            await self.channel_layer.group_discard(group, self.channel_name)
        self.groups_joined = []

    async def receive(self, text_data=None, bytes_data=None):
        """Handle incoming WebSocket messages"""
        try:
            data = json.loads(text_data or '')
        except ValueError:
            await self.send(text_data=json.dumps({'type': 'error', 'message': 'Invalid JSON'}))
            return

        if isinstance(data, dict) and data.get('type') == 'ping':
            await self.send(text_data=json.dumps({
                'type': 'pong',
                'timestamp': timezone.now().isoformat(),
            }))

    async def video_progress(self, event):
        """Forward a lesson progress event"""
        message = event.get('message') or {}
        if message.get('type') not in EVENT_TYPES:
            return
        await self.send(text_data=json.dumps(message))

    async def dashboard_update(self, event):
        """Forward a dashboard update"""
        await self.send(text_data=json.dumps(event.get('message') or {}))
