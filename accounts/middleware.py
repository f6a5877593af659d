import logging
from urllib.parse import parse_qs

from channels.auth import AuthMiddlewareStack
from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from rest_framework.authtoken.models import Token

logger = logging.getLogger(__name__)

TOKEN_KEYWORD = "token"


def token_key_from_scope(scope):
    """
    API token carried by a websocket handshake.

    Read from an `Authorization: Token <key>` header, falling back to the
    `?token=<key>` query parameter.
    """
    for name, value in scope.get("headers", []):
        if name.lower() == b"authorization":
            keyword, _, key = value.decode("latin1").partition(" ")
            if keyword.lower() == TOKEN_KEYWORD and key.strip():
                return key.strip()

    query = parse_qs(scope.get("query_string", b"").decode("latin1"))
    keys = query.get(TOKEN_KEYWORD)
    return keys[0] if keys else None


@database_sync_to_async
def get_token_user(key):
    try:
        token = Token.objects.select_related("user").get(key=key)
    except Token.DoesNotExist:
        return None
    if not token.user.is_active:
        return None
    return token.user


class TokenAuthMiddleware(BaseMiddleware):
    """
    Resolve a `rest_framework.authtoken` key into `scope["user"]`.

    The session user set by the outer auth middleware is kept when no key
    is given or the key is unknown.
    """

    async def __call__(self, scope, receive, send):
        key = token_key_from_scope(scope)
        if key:
            user = await get_token_user(key)
            if user is not None:
                scope = dict(scope, user=user)
            else:
                logger.warning("Websocket token rejected: path=%s", scope.get("path"))
        return await super().__call__(scope, receive, send)


def TokenAuthMiddlewareStack(inner):
    return AuthMiddlewareStack(TokenAuthMiddleware(inner))
