"""
URL mappings for the LifeLink API.

Trailing slashes are deliberately omitted to match the front-end client.
The ``stats`` routes are listed before the ``<entry_id>`` routes they would
otherwise be captured by.
"""
from django.urls import path, include

from .auth_views import jwt_logout_view, jwt_refresh_view, login_view, register_view
from .views import entries, health, users


urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz, name='healthz'),

    # Donations
    path('api/donations', entries.donations, name='donations'),
    path('api/donations/stats', entries.donation_stats, name='donation_stats'),
    path('api/donations/<str:entry_id>', entries.donation_detail, name='donation_detail'),

    # Resource requests
    path('api/requests', entries.resource_requests, name='requests'),
    path('api/requests/stats', entries.request_stats, name='request_stats'),
    path('api/requests/<str:entry_id>', entries.request_detail, name='request_detail'),

    # Authentication
    path('api/users/register', register_view, name='register_view'),
    path('api/users/login', login_view, name='login_view'),
    path('api/users/refresh', jwt_refresh_view, name='jwt_refresh_view'),
    path('api/users/logout', jwt_logout_view, name='jwt_logout_view'),

    # Users and admin management
    path('api/users/profile', users.profile, name='user_profile'),
    path('api/users/create-admin', users.create_admin, name='create_admin'),
    path('api/users/all', users.all_users, name='all_users'),
    path('api/users/stats', users.system_stats, name='system_stats'),
    path('api/users/<int:user_id>', users.delete_user, name='delete_user'),
]
