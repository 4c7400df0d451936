import jwt
from django.conf import settings
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from channels.middleware import BaseMiddleware
from channels.db import database_sync_to_async
from urllib.parse import parse_qs
import logging

User = get_user_model()
logger = logging.getLogger(__name__)


@database_sync_to_async
def get_user_from_token(token):
    """Resolve a SimpleJWT access token to an active user"""
    jwt_settings = getattr(settings, 'SIMPLE_JWT', {})
    try:
        payload = jwt.decode(
            token,
            jwt_settings.get('SIGNING_KEY', settings.SECRET_KEY),
            algorithms=[jwt_settings.get('ALGORITHM', 'HS256')]
        )

        if payload.get('token_type', 'access') != 'access':
            logger.warning("WebSocket JWT is not an access token")
            return AnonymousUser()

        user_id = payload.get(jwt_settings.get('USER_ID_CLAIM', 'user_id'))
        if not user_id:
            return AnonymousUser()

        try:
            return User.objects.get(id=user_id, is_active=True)
        except (User.DoesNotExist, ValueError):
            logger.warning(f"User {user_id} not found in database")
            return AnonymousUser()

    except jwt.ExpiredSignatureError:
        logger.warning("WebSocket JWT token expired")
    except jwt.InvalidTokenError:
        logger.warning("WebSocket JWT token invalid")

    return AnonymousUser()


def get_token_from_scope(scope):
    """Token from ?token= or an 'Authorization: Bearer <token>' header"""
    query_params = parse_qs(scope.get('query_string', b'').decode())
    token = query_params.get('token', [None])[0]
    if token:
        return token

    for name, value in scope.get('headers', []):
        if name == b'authorization':
            parts = value.decode().split()
            if len(parts) == 2 and parts[0].lower() == 'bearer':
                return parts[1]
    return None


class TokenAuthMiddleware(BaseMiddleware):
    """JWT authentication middleware for WebSocket connections"""

    async def __call__(self, scope, receive, send):
        if scope['type'] == 'websocket':
            scope = dict(scope)
            token = get_token_from_scope(scope)

            if token:
                scope['user'] = await get_user_from_token(token)
            else:
                scope['user'] = AnonymousUser()

        return await super().__call__(scope, receive, send)


def TokenAuthMiddlewareStack(inner):
    return TokenAuthMiddleware(inner)
