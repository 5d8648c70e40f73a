"""
JWT authentication for WebSocket connections.

Browsers cannot set headers on a WebSocket handshake, so the access token is
taken from the ``?token=`` query parameter, falling back to an
``Authorization: Bearer`` header for other clients.  A valid token replaces
``scope['user']``; an invalid one leaves an anonymous user.
"""
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.exceptions import AuthenticationFailed, InvalidToken

from portal.authentication import BearerAuthentication


def _token_from_scope(scope):
    query = parse_qs(scope.get("query_string", b"").decode())
    if query.get("token"):
        return query["token"][0]
    for name, value in scope.get("headers", []):
        if name == b"authorization":
            parts = value.decode().split()
            if len(parts) == 2 and parts[0] == "Bearer":
                return parts[1]
    return None


@database_sync_to_async
def _user_for_token(raw_token):
    auth = BearerAuthentication()
    try:
        return auth.get_user(auth.get_validated_token(raw_token))
    except (InvalidToken, AuthenticationFailed):
        return AnonymousUser()


class JWTAuthMiddleware(BaseMiddleware):
    async def __call__(self, scope, receive, send):
        token = _token_from_scope(scope)
        if token:
            scope = dict(scope, user=await _user_for_token(token))
        return await super().__call__(scope, receive, send)
