from datetime import timedelta

import pytest
from django.conf import settings
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from portal.models import AuditEvent, Role, User
from portal.tests.factories import PASSWORD, create_user

pytestmark = pytest.mark.django_db


def login(client, email, password, role):
    return client.post(reverse('login_view'), {'email': email, 'password': password, 'type': role}, format='json')


def bearer(user, password=PASSWORD):
    client = APIClient()
    r = login(client, user.email, password, user.role)
    assert r.status_code == 200, r.data
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {r.data['data']['tokens']['access']}")
    return client


def registration(**overrides):
    payload = {
        'type': 'donor',
        'name': 'Asha Verma',
        'email': 'Asha@Example.com',
        'password': 'longenough1',
        'phone': '9876543210',
        'bloodGroup': 'B+',
    }
    payload.update(overrides)
    return payload


def test_register_login_and_profile():
    client = APIClient()
    r = client.post(reverse('register_view'), registration(name='<b>Asha</b> Verma'), format='json')
    assert r.status_code == 201
    user = r.data['data']['user']
    assert user['email'] == 'asha@example.com'
    assert user['type'] == 'donor'
    assert user['profile']['name'] == 'Asha Verma'
    assert user['profile']['bloodGroup'] == 'B+'
    assert r.data['data']['tokens']['access']

    r = login(client, 'ASHA@example.com', 'longenough1', 'donor')
    assert r.status_code == 200
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {r.data['data']['tokens']['access']}")
    r = client.get(reverse('user_profile'))
    assert r.status_code == 200
    assert r.data['data']['lastLogin'] is not None


def test_duplicate_email_is_a_conflict():
    client = APIClient()
    assert client.post(reverse('register_view'), registration(), format='json').status_code == 201
    r = client.post(reverse('register_view'), registration(type='patient', email='asha@example.com'), format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'conflict'
    assert User.objects.filter(email='asha@example.com').count() == 1


@pytest.mark.parametrize('overrides', [
    {'type': 'hospital', 'address': ''},
    {'type': 'admin'},
    {'phone': '12345'},
    {'bloodGroup': ''},
    {'password': 'short'},
])
def test_register_rejects_invalid_payloads(overrides):
    r = APIClient().post(reverse('register_view'), registration(**overrides), format='json')
    assert r.status_code == 400
    assert r.data['ok'] is False
    assert r.data['error']['code'] == 'validation_error'
    assert not User.objects.exists()


def test_login_is_scoped_to_role():
    donor = create_user(Role.DONOR)
    r = login(APIClient(), donor.email, PASSWORD, 'hospital')
    assert r.status_code == 400
    assert r.data['error']['message'] == 'Invalid login credentials'


def test_access_token_carries_role_claim():
    hospital = create_user(Role.HOSPITAL, name='City Hospital')
    r = login(APIClient(), hospital.email, PASSWORD, 'hospital')
    token = AccessToken(r.data['data']['tokens']['access'])
    assert token['role'] == 'hospital'
    assert token['name'] == 'City Hospital'


def test_lockout_after_repeated_failures():
    client = APIClient()
    patient = create_user(Role.PATIENT)
    for _ in range(settings.LOGIN_MAX_ATTEMPTS):
        assert login(client, patient.email, 'wrong-password', 'patient').status_code == 400

    r = login(client, patient.email, PASSWORD, 'patient')
    assert r.status_code == 423
    assert r.data['error']['code'] == 'account_locked'

    patient.refresh_from_db()
    assert patient.lock_until > timezone.now()
    assert AuditEvent.objects.filter(user=patient, action='login').count() == settings.LOGIN_MAX_ATTEMPTS


def test_expired_lock_restarts_the_count():
    patient = create_user(Role.PATIENT)
    patient.login_attempts = settings.LOGIN_MAX_ATTEMPTS
    patient.lock_until = timezone.now() - timedelta(minutes=1)
    patient.save()

    client = APIClient()
    assert login(client, patient.email, 'wrong-password', 'patient').status_code == 400
    patient.refresh_from_db()
    assert patient.login_attempts == 1
    assert patient.lock_until is None

    assert login(client, patient.email, PASSWORD, 'patient').status_code == 200
    patient.refresh_from_db()
    assert patient.login_attempts == 0


def test_deactivated_account_is_refused():
    donor = create_user(Role.DONOR)
    client = bearer(donor)
    donor.status = User.STATUS_DEACTIVATED
    donor.save()

    r = login(APIClient(), donor.email, PASSWORD, 'donor')
    assert r.status_code == 403
    r = client.get(reverse('donations'))
    assert r.status_code == 401


def test_refresh_and_logout_blacklists_token():
    donor = create_user(Role.DONOR)
    client = APIClient()
    tokens = login(client, donor.email, PASSWORD, 'donor').data['data']['tokens']

    r = client.post(reverse('jwt_refresh_view'), {'refresh': tokens['refresh']}, format='json')
    assert r.status_code == 200
    assert r.data['data']['access']
    refresh = r.data['data']['refresh']

    client.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")
    r = client.post(reverse('jwt_logout_view'), {'refresh': refresh}, format='json')
    assert r.status_code == 200
    assert r.data['data']['blacklisted'] == 1

    r = APIClient().post(reverse('jwt_refresh_view'), {'refresh': refresh}, format='json')
    assert r.status_code == 401


def test_logout_refuses_someone_elses_token():
    donor = create_user(Role.DONOR)
    other = create_user(Role.PATIENT)
    foreign = login(APIClient(), other.email, PASSWORD, 'patient').data['data']['tokens']['refresh']
    r = bearer(donor).post(reverse('jwt_logout_view'), {'refresh': foreign}, format='json')
    assert r.status_code == 403


def test_only_main_admin_creates_admins(main_admin):
    admin = create_user(Role.ADMIN)
    payload = {'name': 'Second Admin', 'email': 'second@lifelink.com', 'password': 'longenough1'}

    assert bearer(admin).post(reverse('create_admin'), payload, format='json').status_code == 403

    r = bearer(main_admin).post(reverse('create_admin'), payload, format='json')
    assert r.status_code == 201
    assert r.data['data']['type'] == 'admin'
    assert r.data['data']['isMainAdmin'] is False
    assert User.objects.get(email='second@lifelink.com').phone == '0000000000'


def test_admin_deletion_rules(main_admin):
    admin = create_user(Role.ADMIN)
    other_admin = create_user(Role.ADMIN)
    donor = create_user(Role.DONOR)
    admin_client = bearer(admin)

    r = admin_client.delete(reverse('delete_user', args=[other_admin.pk]))
    assert r.status_code == 403
    assert r.data['error']['message'] == 'Only main admin can delete admin users'

    assert admin_client.delete(reverse('delete_user', args=[donor.pk])).status_code == 200
    assert not User.objects.filter(pk=donor.pk).exists()
    assert admin_client.delete(reverse('delete_user', args=[donor.pk])).status_code == 404

    main_client = bearer(main_admin)
    r = main_client.delete(reverse('delete_user', args=[main_admin.pk]))
    assert r.status_code == 403
    assert r.data['error']['message'] == 'Main admin cannot be deleted'
    assert main_client.delete(reverse('delete_user', args=[other_admin.pk])).status_code == 200


def test_non_admin_cannot_list_users():
    donor = create_user(Role.DONOR)
    assert bearer(donor).get(reverse('all_users')).status_code == 403


def test_profile_update_keeps_role():
    hospital = create_user(Role.HOSPITAL)
    client = bearer(hospital)
    r = client.patch(reverse('user_profile'), {'name': 'Metro Clinic', 'type': 'admin'}, format='json')
    assert r.status_code == 200
    assert r.data['data']['profile']['name'] == 'Metro Clinic'
    assert r.data['data']['type'] == 'hospital'

    r = client.patch(reverse('user_profile'), {'address': ''}, format='json')
    assert r.status_code == 400
