import pytest
from django.conf import settings
from django.core.cache import cache

from portal.models import Role
from portal.tests.factories import create_user


@pytest.fixture(autouse=True)
def _clear_cache():
    """Throttle counters and cached stats live in the cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def make_user(db):
    return create_user


@pytest.fixture
def donor(make_user):
    return make_user(Role.DONOR)


@pytest.fixture
def patient(make_user):
    return make_user(Role.PATIENT)


@pytest.fixture
def hospital(make_user):
    return make_user(Role.HOSPITAL, name='City Hospital')


@pytest.fixture
def hospital2(make_user):
    return make_user(Role.HOSPITAL, name='County Hospital')


@pytest.fixture
def admin_user(make_user):
    return make_user(Role.ADMIN)


@pytest.fixture
def main_admin(make_user):
    return make_user(Role.ADMIN, email=settings.MAIN_ADMIN_EMAIL, name='Main Admin')
