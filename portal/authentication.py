"""
Bearer-token authentication for the API.

Kept in its own module, away from the views, so that DRF can import the
authentication class from settings without pulling in view code and
causing circular imports.
"""
from __future__ import annotations

from django.utils.translation import gettext_lazy as _
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import AuthenticationFailed

from .models import User


class BearerAuthentication(JWTAuthentication):
    """simplejwt authentication that also refuses deactivated accounts.

    A token issued before an administrator deactivated the account stays
    cryptographically valid until it expires; checking the stored status on
    every request closes that window.
    """

    def get_user(self, validated_token):
        user = super().get_user(validated_token)
        if user.status == User.STATUS_DEACTIVATED:
            raise AuthenticationFailed(_('Account is deactivated.'), code='user_inactive')
        return user
