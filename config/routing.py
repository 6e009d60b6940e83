"""
ASGI routing configuration for WebSocket support
"""

from channels.routing import ProtocolTypeRouter, URLRouter
from django.core.asgi import get_asgi_application

# Initialise Django before importing consumers that touch models
django_asgi_app = get_asgi_application()

from apps.videos.routing import websocket_urlpatterns  # noqa: E402
from utils.websocket_auth import JWTAuthMiddlewareStack  # noqa: E402

application = ProtocolTypeRouter({
    # HTTP requests are handled by Django's ASGI application
    "http": django_asgi_app,

    # WebSocket requests are handled by our WebSocket routing with JWT auth
    "websocket": JWTAuthMiddlewareStack(
        URLRouter(websocket_urlpatterns)
    ),
})
