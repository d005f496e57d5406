"""WebSocket authentication middleware for JWT and Cookie-based auth."""

import logging
from typing import Optional
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import AccessToken

logger = logging.getLogger(__name__)


@database_sync_to_async
def _get_active_user(user_id):
    User = get_user_model()
    return User.objects.filter(**{api_settings.USER_ID_FIELD: user_id}, is_active=True).first()


def _token_from_scope(scope) -> Optional[str]:
    params = parse_qs(scope.get("query_string", b"").decode())
    token_list = params.get("token")
    if token_list:
        return token_list[0]

    headers = dict(scope.get("headers", []))
    auth_header = headers.get(b"authorization", b"").decode()
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return None


class JWTOrCookieAuthMiddleware(BaseMiddleware):
    """
    Authenticate WebSocket connections using either:
    1. JWT in querystring (?token=...) or an Authorization: Bearer header (mobile)
    2. Session cookies resolved by AuthMiddlewareStack (browser)

    An invalid token always yields AnonymousUser, even if a session exists.
    """

    async def __call__(self, scope, receive, send):
        token = _token_from_scope(scope)

        if token:
            user = None
            try:
                access = AccessToken(token)
                user = await _get_active_user(access[api_settings.USER_ID_CLAIM])
            except (TokenError, KeyError) as e:
                logger.debug("JWT auth failed: %s", e)
            scope["user"] = user or AnonymousUser()
        elif "user" not in scope:
            scope["user"] = AnonymousUser()

        return await super().__call__(scope, receive, send)
