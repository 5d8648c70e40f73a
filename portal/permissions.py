"""
Custom permission classes for role based access control.
"""
from django.conf import settings
from rest_framework.permissions import BasePermission

from .models import Role


class IsAdminRole(BasePermission):
    """Allow access only to users with the admin role."""
    message = 'Admin access required.'

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) == Role.ADMIN)


class IsMainAdmin(BasePermission):
    """Only the main admin (``MAIN_ADMIN_EMAIL``)."""
    message = 'Only the main admin can perform this action.'

    def has_permission(self, request, view) -> bool:
        user = getattr(request, "user", None)
        return bool(
            user and user.is_authenticated
            and getattr(user, "role", None) == Role.ADMIN
            and (user.email or '').lower() == settings.MAIN_ADMIN_EMAIL
        )
