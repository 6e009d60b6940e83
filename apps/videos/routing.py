"""
WebSocket routing for video progress
"""

from django.urls import path

from .consumers import ProgressConsumer

websocket_urlpatterns = [
    path('ws/video-progress/', ProgressConsumer.as_asgi()),
]
