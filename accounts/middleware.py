import asyncio
import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.conf import settings
from django.contrib.auth.models import AnonymousUser

from core.exceptions import Unauthenticated

from .tokens import credential_from_authorization, verify

logger = logging.getLogger(__name__)


def _handshake_credential(scope):
    """Token from ?token=... or an Authorization: Bearer header."""
    query = parse_qs(scope.get("query_string", b"").decode())
    if query.get("token"):
        return query["token"][0]
    for name, value in scope.get("headers", []):
        if name == b"authorization":
            return credential_from_authorization(value.decode())
    return None


class TokenAuthMiddleware(BaseMiddleware):
    """
    Resolves the handshake credential once per connection. Consumers find the
    user in scope["user"] (AnonymousUser on failure) and the reason in
    scope["auth_error"].
    """

    async def __call__(self, scope, receive, send):
        scope = dict(scope)
        scope["user"] = AnonymousUser()
        scope["auth_error"] = None
        try:
            scope["user"] = await asyncio.wait_for(
                database_sync_to_async(verify)(_handshake_credential(scope)),
                timeout=settings.REALTIME_AUTH_TIMEOUT,
            )
        except Unauthenticated as exc:
            scope["auth_error"] = exc.message
        except asyncio.TimeoutError:
            logger.warning("Websocket authentication timed out")
            scope["auth_error"] = "Authentication error: timed out"
        return await super().__call__(scope, receive, send)
