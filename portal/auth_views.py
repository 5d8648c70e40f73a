"""
Authentication views: registration, login, token refresh and logout.

Kept apart from the authentication class (see ``portal.authentication``)
so that DRF can initialise authentication from settings without importing
view code.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken

from portal.exceptions import AuthenticationError, AuthorizationError, ValidationError
from portal.serializers.auth import LoginSerializer, LogoutSerializer, RegisterSerializer
from portal.services.audit import log_action
from portal.services.identity import authenticate_user, format_user, issue_tokens, register_user


class LoginRateThrottle(AnonRateThrottle):
    scope = 'login'


def _client_ip(request):
    return request.META.get('REMOTE_ADDR')


# ---------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
def register_view(request):
    s = RegisterSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = register_user(s.validated_data, ip=_client_ip(request))
    return Response({
        'ok': True,
        'message': 'Registration successful! Your account has been created.',
        'data': {'user': format_user(user), 'tokens': issue_tokens(user)},
    }, status=status.HTTP_201_CREATED)


# ---------------------------------------------------------------------
# Email/password login scoped to one role
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([LoginRateThrottle])
def login_view(request):
    """
    Accepts ``{email, password, type}``.  The account must exist under the
    requested role; five wrong passwords lock it for two hours.
    """
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    user = authenticate_user(vd['email'], vd['password'], vd['type'], ip=_client_ip(request))
    return Response({
        'ok': True,
        'message': 'Login successful',
        'data': {'user': format_user(user), 'tokens': issue_tokens(user)},
    })


# ---------------------------------------------------------------------
# JWT: refresh & logout
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
def jwt_refresh_view(request):
    """Exchange a refresh token for a new access token (and rotated refresh token)."""
    s = TokenRefreshSerializer(data=request.data)
    try:
        s.is_valid(raise_exception=True)
    except TokenError as e:
        raise AuthenticationError(str(e))
    return Response({'ok': True, 'data': s.validated_data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def jwt_logout_view(request):
    """Blacklist the given refresh token, or every outstanding one of the caller."""
    s = LogoutSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    refresh = s.validated_data.get('refresh')
    count = 0
    if refresh:
        try:
            token = RefreshToken(refresh)
        except TokenError as e:
            raise ValidationError(str(e))
        if str(token.get('user_id')) != str(request.user.pk):
            raise AuthorizationError('Token does not belong to the current user')
        token.blacklist()
        count = 1
    else:
        for token in OutstandingToken.objects.filter(user=request.user):
            _, created = BlacklistedToken.objects.get_or_create(token=token)
            count += int(created)
    log_action(user=request.user, action='logout', object_type='user', object_id=request.user.pk,
               detail={'blacklisted': count})
    return Response({'ok': True, 'data': {'blacklisted': count}})
