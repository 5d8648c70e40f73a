"""
Approval workflow shared by donations and resource requests.

An entry starts ``pending`` and is visible to every hospital.  Hospitals
either decline it (which only records a rejection row for that hospital and
leaves the global status alone) or claim it by approving, after which only
the claiming hospital (and admins) may complete it.  Donors may cancel their
own pending donations.

Who may do what is answered by two tables: :data:`CAPABILITIES` for staff
roles and :data:`OWNER_CAPABILITIES` for actions an owner may take on its
own entry.  Each maps an action to the statuses it may be taken from.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from django.db import IntegrityError, transaction
from django.db.models import Count, Q
from django.utils import timezone

from portal.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from portal.models import Donation, EntryStatus, ResourceEntry, ResourceRequest, Role, User
from portal.services import notify, stats
from portal.services.audit import log_action
from portal.services.identity import contact_snapshot
from portal.services.ledger import Ledger, format_entry

logger = logging.getLogger(__name__)

APPROVE = 'approve'
REJECT = 'reject'
COMPLETE = 'complete'
CANCEL = 'cancel'

ACTION_BY_STATUS = {
    EntryStatus.APPROVED: APPROVE,
    EntryStatus.REJECTED: REJECT,
    EntryStatus.COMPLETED: COMPLETE,
    EntryStatus.CANCELLED: CANCEL,
}

# (role, action) -> statuses the action may be taken from
CAPABILITIES = {
    (Role.HOSPITAL, APPROVE): {EntryStatus.PENDING},
    (Role.ADMIN, APPROVE): {EntryStatus.PENDING},
    (Role.HOSPITAL, REJECT): {EntryStatus.PENDING},
    (Role.HOSPITAL, COMPLETE): {EntryStatus.APPROVED},
    (Role.ADMIN, COMPLETE): {EntryStatus.APPROVED},
}

OWNER_CAPABILITIES = {
    CANCEL: {EntryStatus.PENDING},
}

DEFAULT_REJECTION_REASON = 'No reason provided'


class Workflow:
    def __init__(self, model):
        self.model = model
        self.ledger = Ledger(model)
        self.rejection_model = model._meta.get_field('rejections').related_model
        self.label = self.ledger.label

    # ------------------------------------------------------------------
    # visibility
    # ------------------------------------------------------------------
    def visibility(self, user: User) -> Q:
        role = user.role
        if role == Role.ADMIN:
            return Q()
        if role == Role.HOSPITAL:
            rejected = self.rejection_model.objects.filter(hospital=user).values('entry_id')
            return (
                (Q(status=EntryStatus.PENDING) & ~Q(pk__in=rejected))
                | Q(status__in=[EntryStatus.APPROVED, EntryStatus.REJECTED, EntryStatus.COMPLETED],
                    assigned_hospital=user)
                | Q(pk__in=rejected)
            )
        field = self.model.VIEWER_FIELDS.get(role)
        if field is None:
            raise AuthorizationError(f'{role} users cannot view {self.label}s')
        return Q(**{field: user})

    def list_for(self, user: User):
        return self.ledger.find_matching(self.visibility(user))

    def get_for(self, user: User, entry_id) -> ResourceEntry:
        entry = self.list_for(user).filter(pk=self.ledger.parse_id(entry_id)).first()
        if entry is None:
            raise NotFoundError(f'{self.label.capitalize()} not found')
        return entry

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------
    def create(self, user: User, kind: str, details: dict) -> ResourceEntry:
        if user.role != self.model.OWNER_ROLE:
            raise AuthorizationError(f'Only {self.model.OWNER_ROLE}s can create {self.label}s')
        if kind not in dict(self.model.KIND_CHOICES):
            raise ValidationError(f'Invalid {self.label} type: {kind}')
        contact = contact_snapshot(user, details)
        with transaction.atomic():
            entry = self.ledger.insert(**{
                self.model.OWNER_FIELD: user,
                'kind': kind,
                'details': details,
                'status': EntryStatus.PENDING,
                'contact_name': contact['name'],
                'contact_email': contact['email'],
                'contact_phone': contact['phone'],
            })
            log_action(user=user, action=f'{self.label}_create', object_type=self.label,
                       object_id=entry.pk, detail={'type': kind})
            self._after_commit('created', entry)
        stats.invalidate()
        logger.info('%s %s created by %s', self.label, entry.pk, user.pk)
        return entry

    def _capability(self, user: User, action: str) -> tuple[set, bool]:
        """Statuses ``action`` is allowed from for ``user``, and whether it is an owner action."""
        if action in self.model.OWNER_ACTIONS and user.role == self.model.OWNER_ROLE:
            return OWNER_CAPABILITIES[action], True
        allowed = CAPABILITIES.get((user.role, action))
        if allowed is None:
            raise AuthorizationError(f'{user.role} users cannot {action} {self.label}s')
        return allowed, False

    def transition(self, user: User, entry_id, target_status: str, *,
                   reason: Optional[str] = None, patient: Optional[User] = None) -> ResourceEntry:
        action = ACTION_BY_STATUS.get(target_status)
        if action is None:
            raise ValidationError(f'Invalid status update: {target_status}')
        allowed, owner_action = self._capability(user, action)
        linkage = self._linkage(user, patient)

        with transaction.atomic():
            entry = self.ledger.find_by_id(entry_id, for_update=True)
            if owner_action and entry.owner_id != user.pk:
                raise AuthorizationError(f'You can only {action} your own {self.label}s')

            if action == REJECT and self._already_rejected(entry, user):
                return self._apply_linkage(entry, linkage)
            if action == APPROVE and entry.status == EntryStatus.APPROVED:
                if entry.assigned_hospital_id == user.pk:
                    return self._apply_linkage(entry, linkage)
                raise ConflictError(f'{self.label.capitalize()} has already been claimed by another hospital')
            if entry.status not in allowed:
                raise InvalidTransition(f'Cannot {action} a {entry.status} {self.label}')
            if action == COMPLETE and user.role == Role.HOSPITAL and entry.assigned_hospital_id != user.pk:
                raise AuthorizationError(f'Only the assigned hospital can complete this {self.label}')

            now = timezone.now()
            if action == REJECT:
                if not self._reject(entry, user, reason, now):
                    return self._apply_linkage(entry, linkage)
                if linkage:
                    self.ledger.update(entry, **linkage)
                else:
                    self.ledger.touch(entry)
            else:
                changes = dict(linkage)
                if action == APPROVE:
                    changes.update(
                        status=EntryStatus.APPROVED,
                        assigned_hospital=user,
                        assigned_hospital_name=user.display_name,
                        approved_by=user,
                        approved_at=entry.approved_at or now,
                    )
                elif action == COMPLETE:
                    changes.update(status=EntryStatus.COMPLETED, completed_at=entry.completed_at or now)
                elif action == CANCEL:
                    changes.update(status=EntryStatus.CANCELLED)
                self.ledger.update(entry, **changes)

            log_action(user=user, action=f'{self.label}_{action}', object_type=self.label,
                       object_id=entry.pk, detail={'status': entry.status, 'reason': reason})
            self._after_commit('updated', entry)
        logger.info('%s %s: %s by %s (%s)', self.label, entry.pk, action, user.pk, user.role)
        return entry

    def _already_rejected(self, entry: ResourceEntry, user: User) -> bool:
        return self.rejection_model.objects.filter(entry=entry, hospital=user).exists()

    def _reject(self, entry: ResourceEntry, user: User, reason: Optional[str], now) -> bool:
        """Record the rejection row; False when one already exists for this hospital."""
        try:
            with transaction.atomic():
                self.rejection_model.objects.create(
                    entry=entry,
                    hospital=user,
                    hospital_name=user.display_name,
                    reason=(reason or '').strip() or DEFAULT_REJECTION_REASON,
                    created_at=now,
                )
        except IntegrityError:
            # lost a race with the same hospital rejecting twice
            logger.info('%s %s already rejected by %s', self.label, entry.pk, user.pk)
            return False
        return True

    def _linkage(self, user: User, patient: Optional[User]) -> dict:
        if patient is None:
            return {}
        if user.role not in (Role.HOSPITAL, Role.ADMIN):
            raise AuthorizationError('Only hospitals and admins can link a patient')
        if not hasattr(self.model, 'patient_name'):
            raise ValidationError(f'{self.label.capitalize()}s cannot be linked to a patient')
        return {'patient': patient, 'patient_name': patient.display_name}

    def _apply_linkage(self, entry: ResourceEntry, linkage: dict) -> ResourceEntry:
        if linkage and entry.status != EntryStatus.COMPLETED:
            self.ledger.update(entry, **linkage)
        return entry

    def delete(self, user: User, entry_id) -> None:
        if user.role not in (Role.ADMIN, self.model.OWNER_ROLE):
            raise AuthorizationError(f'Not authorized to delete {self.label}s')
        with transaction.atomic():
            entry = self.ledger.find_by_id(entry_id, for_update=True)
            if user.role != Role.ADMIN and entry.owner_id != user.pk:
                raise AuthorizationError(f'You can only delete your own {self.label}s')
            payload = {'id': str(entry.pk), 'type': entry.kind, 'status': entry.status}
            self.ledger.delete_by_id(entry.pk)
            log_action(user=user, action=f'{self.label}_delete', object_type=self.label,
                       object_id=entry.pk, detail={'status': entry.status})
            transaction.on_commit(lambda: notify.broadcast_entry('deleted', self.label, payload))
        stats.invalidate()
        logger.info('%s %s deleted by %s (%s)', self.label, payload['id'], user.pk, user.role)

    def _after_commit(self, event: str, entry: ResourceEntry) -> None:
        transaction.on_commit(lambda: notify.broadcast_entry(event, self.label, format_entry(entry)))

    # ------------------------------------------------------------------
    # counts
    # ------------------------------------------------------------------
    def stats(self, user: User) -> dict:
        aggregates = {'total': Count('pk')}
        for status in EntryStatus.ALL:
            aggregates[f'status_{status}'] = Count('pk', filter=Q(status=status))
        for kind, _ in self.model.KIND_CHOICES:
            aggregates[f'kind_{kind}'] = Count('pk', filter=Q(kind=kind))
        if user.role == self.model.OWNER_ROLE:
            aggregates['mine'] = Count('pk', filter=Q(**{self.model.OWNER_FIELD: user}))
        elif user.role == Role.HOSPITAL:
            aggregates['mine'] = Count('pk', filter=Q(assigned_hospital=user))
        row = self.model.objects.aggregate(**aggregates)

        data = {'total': row['total']}
        for status in EntryStatus.ALL:
            data[status] = row[f'status_{status}']
        data['byType'] = {kind: row[f'kind_{kind}'] for kind, _ in self.model.KIND_CHOICES}
        if user.role == self.model.OWNER_ROLE:
            data[self.model.MINE_KEY] = row['mine']
        elif user.role == Role.HOSPITAL:
            data['myApprovals'] = row['mine']
        return data


donation_workflow = Workflow(Donation)
request_workflow = Workflow(ResourceRequest)


def _expiry_date(details: dict) -> Optional[date]:
    raw = (details or {}).get('expiryDate')
    if not raw:
        return None
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        logger.warning('Unparseable expiryDate %r', raw)
        return None


def expire_stale_donations(today: Optional[date] = None) -> list[str]:
    """Mark pending medicine donations whose ``expiryDate`` is before ``today`` as expired."""
    today = today or timezone.localdate()
    ledger = donation_workflow.ledger
    expired = []
    candidates = Donation.objects.filter(status=EntryStatus.PENDING, kind='medicine')
    for entry in list(candidates):
        expiry = _expiry_date(entry.details)
        if expiry is None or expiry >= today:
            continue
        try:
            with transaction.atomic():
                ledger.update(entry, status=EntryStatus.EXPIRED)
                log_action(user=None, action='donation_expire', object_type='donation',
                           object_id=entry.pk, detail={'expiryDate': expiry.isoformat()})
        except ConflictError:
            logger.info('donation %s changed while expiring, skipped', entry.pk)
            continue
        expired.append(str(entry.pk))
    if expired:
        logger.info('expired %d donations', len(expired))
    return expired
