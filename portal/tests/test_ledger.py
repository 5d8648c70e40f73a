import pytest

from portal.exceptions import ConflictError, NotFoundError
from portal.models import Donation, EntryStatus, ResourceRequest
from portal.services.ledger import Ledger, format_entry
from portal.services.workflow import donation_workflow, request_workflow

pytestmark = pytest.mark.django_db


def test_stale_version_token_conflicts(donor, hospital, hospital2):
    entry = donation_workflow.create(donor, 'blood', {})
    ledger = Ledger(Donation)
    first_read = ledger.find_by_id(entry.pk)
    second_read = ledger.find_by_id(entry.pk)

    ledger.update(first_read, status=EntryStatus.APPROVED, assigned_hospital=hospital)
    with pytest.raises(ConflictError):
        ledger.update(second_read, status=EntryStatus.APPROVED, assigned_hospital=hospital2)

    entry.refresh_from_db()
    assert entry.assigned_hospital_id == hospital.pk
    assert entry.version == 2


def test_touch_refreshes_updated_at_without_version(patient):
    entry = request_workflow.create(patient, 'bed', {'bedType': 'icu'})
    ledger = Ledger(ResourceRequest)
    before = entry.updated_at
    ledger.touch(entry)
    entry.refresh_from_db()
    assert entry.updated_at > before
    assert entry.version == 1


def test_find_by_id_unknown_or_malformed():
    ledger = Ledger(Donation)
    with pytest.raises(NotFoundError):
        ledger.find_by_id('not-a-uuid')
    with pytest.raises(NotFoundError):
        ledger.find_by_id('5f0c6d8e-1b2a-4c3d-9e8f-0a1b2c3d4e5f')


def test_count_and_delete(donor):
    ledger = Ledger(Donation)
    a = donation_workflow.create(donor, 'blood', {})
    donation_workflow.create(donor, 'medicine', {})
    assert ledger.count() == 2
    assert ledger.delete_by_id(a.pk) == 1
    assert ledger.count() == 1
    assert ledger.delete_by_id(a.pk) == 0


def test_format_entry_donation_shape(donor, hospital):
    entry = donation_workflow.create(donor, 'blood', {'bloodType': 'B-'})
    donation_workflow.transition(hospital, entry.pk, EntryStatus.REJECTED, reason='full')
    data = format_entry(Ledger(Donation).find_by_id(entry.pk))
    assert data['id'] == str(entry.pk)
    assert data['type'] == 'blood'
    assert data['donorId'] == donor.pk
    assert data['status'] == 'pending'
    assert data['assignedHospitalId'] is None
    assert data['contact'] == {'name': donor.name, 'email': donor.email, 'phone': donor.phone}
    assert [r['hospitalId'] for r in data['rejections']] == [hospital.pk]
    assert data['rejections'][0]['reason'] == 'full'
    assert 'requesterId' not in data


def test_format_entry_request_shape(patient):
    entry = request_workflow.create(patient, 'doctor', {'doctorSpecialty': 'cardiology'})
    data = format_entry(entry)
    assert data['requesterId'] == patient.pk
    assert data['rejections'] == []
    assert 'donorId' not in data and 'patientId' not in data
