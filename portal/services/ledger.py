"""
Persistence layer for donations and resource requests.

A :class:`Ledger` wraps one entry model and exposes the handful of
operations the workflow needs.  Status writes go through :meth:`Ledger.update`,
which is conditional on the row's ``version`` so a stale read can never
overwrite a newer claim.
"""
import uuid
from typing import Optional

from django.db.models import F, Q, QuerySet
from django.utils import timezone

from portal.exceptions import ConflictError, NotFoundError
from portal.models import Donation, ResourceEntry


class Ledger:
    def __init__(self, model):
        self.model = model
        self.label = 'donation' if model is Donation else 'request'

    def queryset(self) -> QuerySet:
        return self.model.objects.select_related('assigned_hospital').prefetch_related('rejections')

    def insert(self, **fields) -> ResourceEntry:
        return self.model.objects.create(**fields)

    def parse_id(self, entry_id) -> uuid.UUID:
        try:
            return entry_id if isinstance(entry_id, uuid.UUID) else uuid.UUID(str(entry_id))
        except ValueError:
            raise NotFoundError(f'{self.label.capitalize()} not found')

    def find_by_id(self, entry_id, *, for_update: bool = False) -> ResourceEntry:
        qs = self.model.objects.select_for_update() if for_update else self.queryset()
        entry = qs.filter(pk=self.parse_id(entry_id)).first()
        if entry is None:
            raise NotFoundError(f'{self.label.capitalize()} not found')
        return entry

    def find_matching(self, predicate: Optional[Q] = None) -> QuerySet:
        qs = self.queryset()
        if predicate is not None:
            qs = qs.filter(predicate)
        return qs.order_by('-created_at')

    def update(self, entry: ResourceEntry, **changes) -> ResourceEntry:
        """Write ``changes`` if nobody else has written the entry since it was read."""
        changes['updated_at'] = timezone.now()
        rows = self.model.objects.filter(pk=entry.pk, version=entry.version).update(
            version=F('version') + 1, **changes
        )
        if rows == 0:
            raise ConflictError(f'{self.label.capitalize()} was modified by another user, reload and try again')
        for field, value in changes.items():
            setattr(entry, field, value)
        entry.version += 1
        return entry

    def touch(self, entry: ResourceEntry) -> ResourceEntry:
        entry.updated_at = timezone.now()
        self.model.objects.filter(pk=entry.pk).update(updated_at=entry.updated_at)
        return entry

    def delete_by_id(self, entry_id) -> int:
        # rejection rows cascade; count entries only
        _, per_model = self.model.objects.filter(pk=self.parse_id(entry_id)).delete()
        return per_model.get(self.model._meta.label, 0)

    def count(self, predicate: Optional[Q] = None) -> int:
        qs = self.model.objects.all()
        if predicate is not None:
            qs = qs.filter(predicate)
        return qs.count()


def _iso(value):
    return value.isoformat() if value else None


def format_rejection(rejection) -> dict:
    return {
        'hospitalId': rejection.hospital_id,
        'hospitalName': rejection.hospital_name,
        'reason': rejection.reason,
        'timestamp': _iso(rejection.created_at),
    }


def format_entry(entry: ResourceEntry) -> dict:
    data = {
        'id': str(entry.pk),
        'type': entry.kind,
        'details': entry.details,
        'status': entry.status,
        'contact': {
            'name': entry.contact_name,
            'email': entry.contact_email,
            'phone': entry.contact_phone,
        },
        'assignedHospitalId': entry.assigned_hospital_id,
        'assignedHospitalName': entry.assigned_hospital_name or None,
        'rejections': [format_rejection(r) for r in entry.rejections.all()],
        'approvedBy': entry.approved_by_id,
        'approvedAt': _iso(entry.approved_at),
        'completedAt': _iso(entry.completed_at),
        'createdAt': _iso(entry.created_at),
        'updatedAt': _iso(entry.updated_at),
        'version': entry.version,
    }
    if isinstance(entry, Donation):
        data['donorId'] = entry.donor_id
        data['patientId'] = entry.patient_id
        data['patientName'] = entry.patient_name or None
    else:
        data['requesterId'] = entry.patient_id
    return data
