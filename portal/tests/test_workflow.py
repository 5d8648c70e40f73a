"""
Service-level tests for the donation/request approval workflow.
"""
from datetime import date

import pytest

from portal.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from portal.models import AuditEvent, DonationRejection, EntryStatus, RequestRejection, Role
from portal.services.workflow import donation_workflow, expire_stale_donations, request_workflow

pytestmark = pytest.mark.django_db


def _ids(qs):
    return {e.pk for e in qs}


@pytest.fixture
def blood_request(patient):
    return request_workflow.create(patient, 'blood', {'urgency': 'critical', 'bloodType': 'A+', 'bloodUnits': 2})


@pytest.fixture
def donation(donor):
    return donation_workflow.create(donor, 'blood', {'bloodType': 'O+', 'bloodUnits': 1, 'urgency': 'medium'})


# ---------------------------------------------------------------------
# create
# ---------------------------------------------------------------------
def test_create_request_is_pending_and_visible_to_owner_and_all_hospitals(patient, hospital, hospital2, blood_request):
    assert blood_request.status == EntryStatus.PENDING
    assert blood_request.details['urgency'] == 'critical'
    assert blood_request.pk in _ids(request_workflow.list_for(patient))
    assert blood_request.pk in _ids(request_workflow.list_for(hospital))
    assert blood_request.pk in _ids(request_workflow.list_for(hospital2))


def test_create_requires_owner_role(donor, patient, hospital):
    with pytest.raises(AuthorizationError):
        request_workflow.create(donor, 'blood', {})
    with pytest.raises(AuthorizationError):
        donation_workflow.create(patient, 'blood', {})
    with pytest.raises(AuthorizationError):
        donation_workflow.create(hospital, 'medicine', {})


def test_create_rejects_unknown_kind(donor):
    with pytest.raises(ValidationError):
        donation_workflow.create(donor, 'bed', {})


def test_contact_snapshot_is_not_resynced(patient, blood_request):
    assert blood_request.contact_name == patient.name
    assert blood_request.contact_email == patient.email
    patient.name = 'Renamed Patient'
    patient.phone = '9999999999'
    patient.save()
    blood_request.refresh_from_db()
    assert blood_request.contact_name != 'Renamed Patient'
    assert blood_request.contact_phone != '9999999999'


def test_donation_contact_preference_overrides_snapshot(donor):
    by_email = donation_workflow.create(donor, 'blood', {'contactPreference': 'email', 'contactDetails': 'alt@example.com'})
    by_sms = donation_workflow.create(donor, 'blood', {'contactPreference': 'sms', 'contactDetails': '5550001111'})
    assert by_email.contact_email == 'alt@example.com'
    assert by_email.contact_phone == donor.phone
    assert by_sms.contact_phone == '5550001111'
    assert by_sms.contact_email == donor.email


# ---------------------------------------------------------------------
# reject / approve scenarios
# ---------------------------------------------------------------------
def test_rejection_keeps_pending_and_stays_visible(hospital, hospital2, blood_request):
    entry = request_workflow.transition(hospital, blood_request.pk, EntryStatus.REJECTED, reason='no stock')
    assert entry.status == EntryStatus.PENDING
    rejection = RequestRejection.objects.get(entry=blood_request)
    assert rejection.hospital == hospital
    assert rejection.reason == 'no stock'
    # H1 keeps it for its own history, H2 still sees it pending
    assert blood_request.pk in _ids(request_workflow.list_for(hospital))
    assert blood_request.pk in _ids(request_workflow.list_for(hospital2))


def test_repeat_rejection_is_a_silent_noop(hospital, blood_request):
    request_workflow.transition(hospital, blood_request.pk, EntryStatus.REJECTED, reason='no stock')
    entry = request_workflow.transition(hospital, blood_request.pk, EntryStatus.REJECTED, reason='still none')
    assert entry.status == EntryStatus.PENDING
    assert RequestRejection.objects.filter(entry=blood_request, hospital=hospital).count() == 1
    assert RequestRejection.objects.get(entry=blood_request).reason == 'no stock'


def test_rejection_without_reason_uses_default(hospital, donation):
    donation_workflow.transition(hospital, donation.pk, EntryStatus.REJECTED)
    assert DonationRejection.objects.get(entry=donation).reason == 'No reason provided'


def test_rejection_does_not_bump_version(hospital, hospital2, blood_request):
    version = blood_request.version
    request_workflow.transition(hospital, blood_request.pk, EntryStatus.REJECTED, reason='no beds')
    blood_request.refresh_from_db()
    assert blood_request.version == version
    # a rejection never blocks another hospital's claim
    entry = request_workflow.transition(hospital2, blood_request.pk, EntryStatus.APPROVED)
    assert entry.status == EntryStatus.APPROVED


def test_second_hospital_claims_after_first_rejects(hospital, hospital2, blood_request):
    request_workflow.transition(hospital, blood_request.pk, EntryStatus.REJECTED, reason='no stock')
    entry = request_workflow.transition(hospital2, blood_request.pk, EntryStatus.APPROVED)
    assert entry.status == EntryStatus.APPROVED
    assert entry.assigned_hospital_id == hospital2.pk
    assert entry.assigned_hospital_name == 'County Hospital'
    assert entry.approved_by_id == hospital2.pk

    pending_h1 = request_workflow.list_for(hospital).filter(status=EntryStatus.PENDING)
    pending_h2 = request_workflow.list_for(hospital2).filter(status=EntryStatus.PENDING)
    assert blood_request.pk not in _ids(pending_h1)
    assert blood_request.pk not in _ids(pending_h2)
    approved_h2 = request_workflow.list_for(hospital2).filter(status=EntryStatus.APPROVED)
    assert blood_request.pk in _ids(approved_h2)
    # H1 rejected it, so it stays in H1's history after the status change
    assert blood_request.pk in _ids(request_workflow.list_for(hospital))


def test_claimed_entry_is_hidden_from_other_hospitals(hospital, hospital2, blood_request):
    request_workflow.transition(hospital, blood_request.pk, EntryStatus.APPROVED)
    assert blood_request.pk not in _ids(request_workflow.list_for(hospital2))
    assert blood_request.pk in _ids(request_workflow.list_for(hospital))


def test_repeat_approve_sets_approved_at_once(hospital, blood_request):
    first = request_workflow.transition(hospital, blood_request.pk, EntryStatus.APPROVED)
    approved_at, version = first.approved_at, first.version
    second = request_workflow.transition(hospital, blood_request.pk, EntryStatus.APPROVED)
    assert second.approved_at == approved_at
    assert second.version == version


def test_approve_of_claimed_entry_by_other_hospital_conflicts(hospital, hospital2, blood_request):
    request_workflow.transition(hospital, blood_request.pk, EntryStatus.APPROVED)
    with pytest.raises(ConflictError):
        request_workflow.transition(hospital2, blood_request.pk, EntryStatus.APPROVED)
    blood_request.refresh_from_db()
    assert blood_request.assigned_hospital_id == hospital.pk


def test_admin_can_approve_and_complete(admin_user, blood_request):
    entry = request_workflow.transition(admin_user, blood_request.pk, EntryStatus.APPROVED)
    assert entry.assigned_hospital_id == admin_user.pk
    entry = request_workflow.transition(admin_user, blood_request.pk, EntryStatus.COMPLETED)
    assert entry.status == EntryStatus.COMPLETED
    assert entry.completed_at is not None


def test_admin_cannot_reject(admin_user, blood_request):
    with pytest.raises(AuthorizationError):
        request_workflow.transition(admin_user, blood_request.pk, EntryStatus.REJECTED)


# ---------------------------------------------------------------------
# complete / cancel
# ---------------------------------------------------------------------
def test_only_assigned_hospital_completes(hospital, hospital2, blood_request):
    request_workflow.transition(hospital, blood_request.pk, EntryStatus.APPROVED)
    with pytest.raises(AuthorizationError):
        request_workflow.transition(hospital2, blood_request.pk, EntryStatus.COMPLETED)
    entry = request_workflow.transition(hospital, blood_request.pk, EntryStatus.COMPLETED)
    assert entry.status == EntryStatus.COMPLETED
    assert entry.assigned_hospital_id == hospital.pk


def test_complete_requires_approval(hospital, blood_request):
    with pytest.raises(InvalidTransition):
        request_workflow.transition(hospital, blood_request.pk, EntryStatus.COMPLETED)


def test_completed_entry_allows_no_further_transition(hospital, admin_user, blood_request):
    request_workflow.transition(hospital, blood_request.pk, EntryStatus.APPROVED)
    request_workflow.transition(hospital, blood_request.pk, EntryStatus.COMPLETED)
    for user, target in [
        (hospital, EntryStatus.APPROVED),
        (hospital, EntryStatus.COMPLETED),
        (hospital, EntryStatus.REJECTED),
        (admin_user, EntryStatus.APPROVED),
    ]:
        with pytest.raises(AuthorizationError):
            request_workflow.transition(user, blood_request.pk, target)
    blood_request.refresh_from_db()
    assert blood_request.status == EntryStatus.COMPLETED


def test_donor_cancels_own_pending_donation_then_hospital_cannot_approve(donor, hospital, donation):
    entry = donation_workflow.transition(donor, donation.pk, EntryStatus.CANCELLED)
    assert entry.status == EntryStatus.CANCELLED
    with pytest.raises(AuthorizationError) as excinfo:
        donation_workflow.transition(hospital, donation.pk, EntryStatus.APPROVED)
    assert isinstance(excinfo.value, InvalidTransition)


def test_donor_cannot_cancel_someone_elses_donation(make_user, donation):
    other = make_user(Role.DONOR)
    with pytest.raises(AuthorizationError):
        donation_workflow.transition(other, donation.pk, EntryStatus.CANCELLED)


def test_donor_cannot_approve(donor, donation):
    with pytest.raises(AuthorizationError):
        donation_workflow.transition(donor, donation.pk, EntryStatus.APPROVED)


def test_requests_have_no_owner_cancel(patient, blood_request):
    with pytest.raises(AuthorizationError):
        request_workflow.transition(patient, blood_request.pk, EntryStatus.CANCELLED)


def test_unknown_target_status_is_a_validation_error(hospital, blood_request):
    with pytest.raises(ValidationError):
        request_workflow.transition(hospital, blood_request.pk, EntryStatus.PENDING)


def test_transition_on_unknown_id(hospital):
    with pytest.raises(NotFoundError):
        request_workflow.transition(hospital, '00000000-0000-0000-0000-000000000000', EntryStatus.APPROVED)


# ---------------------------------------------------------------------
# patient linkage
# ---------------------------------------------------------------------
def test_patient_linkage_applies_with_transition(hospital, patient, donation):
    entry = donation_workflow.transition(hospital, donation.pk, EntryStatus.APPROVED, patient=patient)
    assert entry.patient_id == patient.pk
    assert entry.patient_name == patient.name
    assert donation.pk in _ids(donation_workflow.list_for(patient))


def test_unlinked_patient_does_not_see_donation(patient, donation):
    assert donation.pk not in _ids(donation_workflow.list_for(patient))


def test_owner_cannot_link_patient_while_cancelling(donor, patient, donation):
    with pytest.raises(AuthorizationError):
        donation_workflow.transition(donor, donation.pk, EntryStatus.CANCELLED, patient=patient)
    donation.refresh_from_db()
    assert donation.status == EntryStatus.PENDING
    assert donation.patient_id is None


def test_reject_lost_to_concurrent_insert_changes_nothing(monkeypatch, hospital, blood_request):
    request_workflow.transition(hospital, blood_request.pk, EntryStatus.REJECTED, reason='no stock')
    blood_request.refresh_from_db()
    before = (blood_request.updated_at, blood_request.version)

    # the existence check misses a row another request just inserted
    monkeypatch.setattr(request_workflow, '_already_rejected', lambda entry, user: False)
    request_workflow.transition(hospital, blood_request.pk, EntryStatus.REJECTED, reason='again')

    blood_request.refresh_from_db()
    assert (blood_request.updated_at, blood_request.version) == before
    assert RequestRejection.objects.filter(entry=blood_request).count() == 1
    assert AuditEvent.objects.filter(action='request_reject').count() == 1


# ---------------------------------------------------------------------
# visibility, read and delete
# ---------------------------------------------------------------------
def test_donor_cannot_list_requests(donor):
    with pytest.raises(AuthorizationError):
        request_workflow.list_for(donor)


def test_owner_sees_only_own_entries(make_user, donation):
    other = make_user(Role.DONOR)
    assert donation.pk not in _ids(donation_workflow.list_for(other))
    with pytest.raises(NotFoundError):
        donation_workflow.get_for(other, donation.pk)


def test_list_is_newest_first(donor):
    first = donation_workflow.create(donor, 'blood', {})
    second = donation_workflow.create(donor, 'medicine', {})
    ids = [e.pk for e in donation_workflow.list_for(donor)]
    assert ids.index(second.pk) < ids.index(first.pk)


def test_admin_delete_removes_entry_for_everyone(admin_user, patient, hospital, blood_request):
    request_workflow.transition(hospital, blood_request.pk, EntryStatus.REJECTED)
    request_workflow.delete(admin_user, blood_request.pk)
    for user in (admin_user, patient, hospital):
        assert blood_request.pk not in _ids(request_workflow.list_for(user))
        with pytest.raises(NotFoundError):
            request_workflow.get_for(user, blood_request.pk)
    assert not RequestRejection.objects.filter(entry_id=blood_request.pk).exists()


def test_owner_deletes_own_but_not_others(make_user, donor, donation):
    other = make_user(Role.DONOR)
    with pytest.raises(AuthorizationError):
        donation_workflow.delete(other, donation.pk)
    donation_workflow.delete(donor, donation.pk)
    with pytest.raises(NotFoundError):
        donation_workflow.get_for(donor, donation.pk)


def test_hospital_can_never_delete(hospital, donation):
    with pytest.raises(AuthorizationError):
        donation_workflow.delete(hospital, donation.pk)


def test_completed_entry_can_still_be_deleted(hospital, patient, blood_request):
    request_workflow.transition(hospital, blood_request.pk, EntryStatus.APPROVED)
    request_workflow.transition(hospital, blood_request.pk, EntryStatus.COMPLETED)
    request_workflow.delete(patient, blood_request.pk)
    with pytest.raises(NotFoundError):
        request_workflow.get_for(patient, blood_request.pk)


# ---------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------
def test_stats_counts(donor, hospital, make_user):
    d1 = donation_workflow.create(donor, 'blood', {})
    donation_workflow.create(donor, 'medicine', {})
    donation_workflow.create(make_user(Role.DONOR), 'blood', {})
    donation_workflow.transition(hospital, d1.pk, EntryStatus.APPROVED)

    data = donation_workflow.stats(donor)
    assert data['total'] == 3
    assert data['pending'] == 2
    assert data['approved'] == 1
    assert data['byType'] == {'blood': 2, 'medicine': 1}
    assert data['myDonations'] == 2
    assert 'myApprovals' not in data

    hospital_data = donation_workflow.stats(hospital)
    assert hospital_data['myApprovals'] == 1
    assert 'myDonations' not in hospital_data


def test_request_stats_for_patient(patient, blood_request):
    data = request_workflow.stats(patient)
    assert data['myRequests'] == 1
    assert data['byType'] == {'blood': 1, 'medicine': 0, 'bed': 0, 'doctor': 0}


# ---------------------------------------------------------------------
# expiry
# ---------------------------------------------------------------------
def test_expire_only_pending_medicine_past_expiry(donor, hospital):
    stale = donation_workflow.create(donor, 'medicine', {'expiryDate': '2024-01-31'})
    fresh = donation_workflow.create(donor, 'medicine', {'expiryDate': '2024-03-01'})
    no_date = donation_workflow.create(donor, 'medicine', {})
    claimed = donation_workflow.create(donor, 'medicine', {'expiryDate': '2024-01-01'})
    donation_workflow.transition(hospital, claimed.pk, EntryStatus.APPROVED)
    blood = donation_workflow.create(donor, 'blood', {'expiryDate': '2024-01-01'})

    expired = expire_stale_donations(date(2024, 2, 1))

    assert expired == [str(stale.pk)]
    for entry, status in [
        (stale, EntryStatus.EXPIRED),
        (fresh, EntryStatus.PENDING),
        (no_date, EntryStatus.PENDING),
        (claimed, EntryStatus.APPROVED),
        (blood, EntryStatus.PENDING),
    ]:
        entry.refresh_from_db()
        assert entry.status == status
