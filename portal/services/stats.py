"""
System-wide dashboard statistics.

The numbers are always derived from the user and entry tables; the cache
only saves the recount between invalidations and expires after
``STATS_CACHE_SECONDS`` in any case.
"""
from django.conf import settings
from django.core.cache import cache
from django.db.models import Count
from django.utils import timezone

from portal.models import Donation, ResourceRequest, Role, User

CACHE_KEY = 'stats:system'


def compute_system_stats() -> dict:
    by_role = dict(User.objects.values_list('role').annotate(n=Count('id')).order_by())
    return {
        'totalUsers': sum(by_role.values()),
        'totalDonors': by_role.get(Role.DONOR, 0),
        'totalHospitals': by_role.get(Role.HOSPITAL, 0),
        'totalPatients': by_role.get(Role.PATIENT, 0),
        'totalDonations': Donation.objects.count(),
        'totalRequests': ResourceRequest.objects.count(),
        'lastUpdated': timezone.now().isoformat(),
    }


def system_stats() -> dict:
    data = cache.get(CACHE_KEY)
    if data is None:
        data = refresh()
    return data


def refresh() -> dict:
    data = compute_system_stats()
    cache.set(CACHE_KEY, data, settings.STATS_CACHE_SECONDS)
    return data


def invalidate() -> None:
    cache.delete(CACHE_KEY)
