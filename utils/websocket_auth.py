"""
WebSocket authentication middleware for Django Channels
"""

import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.core.exceptions import ValidationError
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.tokens import UntypedToken

logger = logging.getLogger(__name__)


@database_sync_to_async
def get_user(user_id):
    """Get user from database"""
    User = get_user_model()
    try:
        return User.objects.get(id=user_id, is_active=True)
    except (User.DoesNotExist, ValidationError, ValueError):
        return AnonymousUser()


def get_token_from_scope(scope):
    """JWT from the ``token`` query parameter, else a Bearer authorization header"""
    query_params = parse_qs(scope.get('query_string', b'').decode('utf-8'))
    token = query_params.get('token', [None])[0]

    if not token:
        headers = dict(scope.get('headers', []))
        auth_header = headers.get(b'authorization', b'').decode('utf-8')
        if auth_header.startswith('Bearer '):
            token = auth_header[7:]

    if token in ('undefined', 'null', ''):
        return None
    return token


class JWTAuthMiddleware(BaseMiddleware):
    """JWT authentication middleware for WebSocket connections"""

    async def __call__(self, scope, receive, send):
        scope = dict(scope)
        scope['user'] = AnonymousUser()

        token = get_token_from_scope(scope)
        if token:
            try:
                validated_token = UntypedToken(token)
                scope['user'] = await get_user(validated_token['user_id'])
            except (InvalidToken, TokenError, KeyError) as e:
                logger.warning(f"WebSocket authentication failed: {str(e)}")
        else:
            logger.debug("WebSocket connection without token")

        return await super().__call__(scope, receive, send)


def JWTAuthMiddlewareStack(inner):
    """Stack JWT authentication middleware"""
    return JWTAuthMiddleware(inner)
