"""
Database models for the LifeLink backend.

Users carry a single role (admin, donor, hospital or patient) and one
canonical profile.  Donations and resource requests share the
:class:`ResourceEntry` shape: a kind, a free-form ``details`` document, a
global status and per-hospital rejection rows kept in a separate table so
that the one-rejection-per-hospital rule is enforced by the database.
"""
from __future__ import annotations

import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.utils import timezone


class Role:
    ADMIN = 'admin'
    DONOR = 'donor'
    HOSPITAL = 'hospital'
    PATIENT = 'patient'

    CHOICES = [
        (ADMIN, 'Administrator'),
        (DONOR, 'Donor'),
        (HOSPITAL, 'Hospital'),
        (PATIENT, 'Patient'),
    ]


BLOOD_GROUPS = ['A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-']


class User(AbstractUser):
    """Account of any LifeLink participant.

    ``username`` always mirrors the lower-cased ``email``; login is by
    email and role.  Hospital users must have an address and donors a
    blood group (enforced at registration).
    """
    STATUS_ACTIVE = 'active'
    STATUS_DEACTIVATED = 'deactivated'
    STATUS_PENDING = 'pending'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_DEACTIVATED, 'Deactivated'),
        (STATUS_PENDING, 'Pending'),
    ]
    GENDER_CHOICES = [('male', 'Male'), ('female', 'Female'), ('other', 'Other')]

    email = models.EmailField(unique=True)
    role = models.CharField(max_length=10, choices=Role.CHOICES, default=Role.PATIENT, db_index=True)
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default=STATUS_ACTIVE)

    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=20, blank=True)
    address = models.CharField(max_length=255, blank=True)
    blood_group = models.CharField(max_length=3, choices=[(g, g) for g in BLOOD_GROUPS], blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)

    login_attempts = models.PositiveIntegerField(default=0)
    lock_until = models.DateTimeField(null=True, blank=True)
    email_verified = models.BooleanField(default=False)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.email} ({self.role})"

    @property
    def display_name(self) -> str:
        return self.name or self.email

    def is_locked(self, now=None) -> bool:
        now = now or timezone.now()
        return bool(self.lock_until and self.lock_until > now)


class EntryStatus:
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    EXPIRED = 'expired'

    CHOICES = [
        (PENDING, 'Pending'),
        (APPROVED, 'Approved'),
        (REJECTED, 'Rejected'),
        (COMPLETED, 'Completed'),
        (CANCELLED, 'Cancelled'),
        (EXPIRED, 'Expired'),
    ]
    ALL = [value for value, _ in CHOICES]


class ResourceEntry(models.Model):
    """Fields shared by donations and resource requests.

    Concrete subclasses declare the owning foreign key, the kinds they
    accept and the role that owns them.  ``version`` is bumped on every
    status write and checked by the ledger so that two hospitals cannot
    both believe they claimed the same entry.
    """
    OWNER_FIELD = ''
    OWNER_ROLE = ''
    # role -> foreign key naming the entries that role sees as "its own"
    VIEWER_FIELDS: dict[str, str] = {}
    # actions the owner may take on its own entry
    OWNER_ACTIONS: tuple[str, ...] = ()
    KIND_CHOICES: list[tuple[str, str]] = []
    MINE_KEY = ''

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    details = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=12, choices=EntryStatus.CHOICES, default=EntryStatus.PENDING, db_index=True)

    contact_name = models.CharField(max_length=255, blank=True)
    contact_email = models.CharField(max_length=255, blank=True)
    contact_phone = models.CharField(max_length=64, blank=True)

    assigned_hospital_name = models.CharField(max_length=255, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    version = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        abstract = True
        ordering = ['-created_at']

    @property
    def owner_id(self):
        return getattr(self, f'{self.OWNER_FIELD}_id')

    @property
    def owner(self) -> User:
        return getattr(self, self.OWNER_FIELD)


class Donation(ResourceEntry):
    """A donor's offer of blood or medicine."""
    OWNER_FIELD = 'donor'
    OWNER_ROLE = Role.DONOR
    VIEWER_FIELDS = {Role.DONOR: 'donor', Role.PATIENT: 'patient'}
    OWNER_ACTIONS = ('cancel',)
    KIND_CHOICES = [('blood', 'Blood'), ('medicine', 'Medicine')]
    MINE_KEY = 'myDonations'

    donor = models.ForeignKey(User, on_delete=models.CASCADE, related_name='donations')
    kind = models.CharField(max_length=16, choices=KIND_CHOICES)
    assigned_hospital = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='claimed_donations'
    )
    approved_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='approved_donations'
    )
    # fulfilment linkage set by hospitals/admins
    patient = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='received_donations'
    )
    patient_name = models.CharField(max_length=255, blank=True)

    class Meta(ResourceEntry.Meta):
        indexes = [
            models.Index(fields=['status', 'created_at'], name='donation_status_created_idx'),
            models.Index(fields=['assigned_hospital', 'status'], name='donation_hosp_status_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.kind} donation {self.pk} ({self.status})"


class ResourceRequest(ResourceEntry):
    """A patient's request for blood, medicine, a bed or a doctor."""
    OWNER_FIELD = 'patient'
    OWNER_ROLE = Role.PATIENT
    VIEWER_FIELDS = {Role.PATIENT: 'patient'}
    KIND_CHOICES = [('blood', 'Blood'), ('medicine', 'Medicine'), ('bed', 'Bed'), ('doctor', 'Doctor')]
    MINE_KEY = 'myRequests'

    patient = models.ForeignKey(User, on_delete=models.CASCADE, related_name='resource_requests')
    kind = models.CharField(max_length=16, choices=KIND_CHOICES)
    assigned_hospital = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='claimed_requests'
    )
    approved_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='approved_requests'
    )

    class Meta(ResourceEntry.Meta):
        indexes = [
            models.Index(fields=['status', 'created_at'], name='request_status_created_idx'),
            models.Index(fields=['assigned_hospital', 'status'], name='request_hosp_status_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.kind} request {self.pk} ({self.status})"


class Rejection(models.Model):
    """One hospital declining one entry.  Rows are never updated or removed."""
    hospital = models.ForeignKey(User, on_delete=models.CASCADE, related_name='+')
    hospital_name = models.CharField(max_length=255, blank=True)
    reason = models.CharField(max_length=500)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        abstract = True
        ordering = ['created_at', 'id']


class DonationRejection(Rejection):
    entry = models.ForeignKey(Donation, on_delete=models.CASCADE, related_name='rejections')

    class Meta(Rejection.Meta):
        constraints = [
            models.UniqueConstraint(fields=['entry', 'hospital'], name='uniq_donation_rejection_per_hospital'),
        ]

    def __str__(self) -> str:
        return f"{self.hospital_id} rejected donation {self.entry_id}"


class RequestRejection(Rejection):
    entry = models.ForeignKey(ResourceRequest, on_delete=models.CASCADE, related_name='rejections')

    class Meta(Rejection.Meta):
        constraints = [
            models.UniqueConstraint(fields=['entry', 'hospital'], name='uniq_request_rejection_per_hospital'),
        ]

    def __str__(self) -> str:
        return f"{self.hospital_id} rejected request {self.entry_id}"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.CharField(max_length=64, blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='audit_action_created_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='audit_object_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.action}:{self.object_type}:{self.object_id}"
