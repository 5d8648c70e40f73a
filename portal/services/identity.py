"""
Identity store operations: registration, credential checks with lockout,
token issuing and admin account management.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework_simplejwt.tokens import RefreshToken

from portal.exceptions import (
    AccountLocked,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from portal.models import Role, User
from portal.services import stats
from portal.services.audit import log_action

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = 'Invalid login credentials'
DUPLICATE_EMAIL = 'Account already exists with this email address'
ADMIN_PLACEHOLDER_PHONE = '0000000000'

# serializer field -> model field
PROFILE_FIELDS = {
    'name': 'name',
    'phone': 'phone',
    'address': 'address',
    'bloodGroup': 'blood_group',
    'dateOfBirth': 'date_of_birth',
    'gender': 'gender',
}


def is_main_admin(user: Optional[User]) -> bool:
    return bool(
        user is not None
        and user.role == Role.ADMIN
        and (user.email or '').lower() == settings.MAIN_ADMIN_EMAIL
    )


def format_user(user: User) -> dict:
    return {
        'id': user.id,
        'email': user.email,
        'type': user.role,
        'status': user.status,
        'profile': {
            'name': user.name,
            'phone': user.phone,
            'address': user.address or None,
            'bloodGroup': user.blood_group or None,
            'dateOfBirth': user.date_of_birth.isoformat() if user.date_of_birth else None,
            'gender': user.gender or None,
        },
        'emailVerified': user.email_verified,
        'isMainAdmin': is_main_admin(user),
        'lastLogin': user.last_login.isoformat() if user.last_login else None,
        'createdAt': user.date_joined.isoformat() if user.date_joined else None,
    }


def contact_snapshot(user: User, details: Optional[dict] = None) -> dict:
    """Owner contact details frozen onto a new entry.

    A donor may ask to be reached at a different address or number through
    ``contactPreference``/``contactDetails``.
    """
    contact = {'name': user.display_name, 'email': user.email, 'phone': user.phone}
    details = details or {}
    preference = details.get('contactPreference')
    override = (details.get('contactDetails') or '').strip()
    if override:
        if preference == 'email':
            contact['email'] = override
        elif preference in ('phone', 'sms'):
            contact['phone'] = override
    return contact


def issue_tokens(user: User) -> dict:
    refresh = RefreshToken.for_user(user)
    for token in (refresh, refresh.access_token):
        token['role'] = user.role
        token['email'] = user.email
        token['name'] = user.display_name
    return {'access': str(refresh.access_token), 'refresh': str(refresh)}


def _create_account(*, email: str, password: str, role: str, **profile) -> User:
    email = email.strip().lower()
    if User.objects.filter(email__iexact=email).exists():
        raise ConflictError(DUPLICATE_EMAIL)
    try:
        with transaction.atomic():
            user = User.objects.create_user(
                username=email,
                email=email,
                password=password,
                role=role,
                **profile,
            )
    except IntegrityError:
        raise ConflictError(DUPLICATE_EMAIL)
    stats.invalidate()
    return user


def register_user(data: dict, *, ip: Optional[str] = None) -> User:
    role = data['type']
    profile = {
        'name': data['name'].strip(),
        'phone': data['phone'].strip(),
        'date_of_birth': data.get('dateOfBirth'),
        'gender': data.get('gender') or '',
    }
    if role == Role.HOSPITAL:
        profile['address'] = data['address'].strip()
    if role == Role.DONOR:
        profile['blood_group'] = data['bloodGroup']
    user = _create_account(email=data['email'], password=data['password'], role=role, **profile)
    log_action(user=user, action='register', object_type='user', object_id=user.id,
               detail={'role': role, 'ip': ip})
    return user


def _register_failure(user: User, now) -> None:
    if user.lock_until and user.lock_until <= now:
        # previous lock has run out, start counting again
        user.login_attempts = 1
        user.lock_until = None
    else:
        user.login_attempts += 1
        if user.login_attempts >= settings.LOGIN_MAX_ATTEMPTS:
            user.lock_until = now + timedelta(minutes=settings.LOGIN_LOCK_MINUTES)
            logger.warning('Account %s locked after %s failed logins', user.email, user.login_attempts)
    user.save(update_fields=['login_attempts', 'lock_until', 'updated_at'])


def authenticate_user(email: str, password: str, role: str, *, ip: Optional[str] = None) -> User:
    """Check credentials for ``email`` under ``role``.

    Unknown accounts and wrong passwords share one message.  Every wrong
    password counts toward the lockout, and once locked the account is
    refused even with the right password until ``lock_until`` passes.
    """
    now = timezone.now()
    user = User.objects.filter(email__iexact=email.strip(), role=role.lower()).first()
    if user is None:
        log_action(user=None, action='login', object_type='user',
                   detail={'result': 'fail', 'email': email, 'ip': ip})
        raise ValidationError(INVALID_CREDENTIALS)
    if user.is_locked(now):
        raise AccountLocked(
            'Account is temporarily locked due to too many failed login attempts. Please try again later.'
        )
    if user.status == User.STATUS_DEACTIVATED or not user.is_active:
        raise AuthorizationError('Account has been deactivated. Please contact support.')
    if not user.check_password(password):
        _register_failure(user, now)
        log_action(user=user, action='login', object_type='user', object_id=user.id,
                   detail={'result': 'fail', 'ip': ip})
        raise ValidationError(INVALID_CREDENTIALS)

    user.login_attempts = 0
    user.lock_until = None
    user.last_login = now
    user.save(update_fields=['login_attempts', 'lock_until', 'last_login', 'updated_at'])
    log_action(user=user, action='login', object_type='user', object_id=user.id,
               detail={'result': 'ok', 'ip': ip})
    return user


def create_admin(creator: User, data: dict) -> User:
    if not is_main_admin(creator):
        raise AuthorizationError('Only main admin can create new admin accounts')
    user = _create_account(
        email=data['email'],
        password=data['password'],
        role=Role.ADMIN,
        name=data['name'].strip(),
        phone=ADMIN_PLACEHOLDER_PHONE,
    )
    log_action(user=creator, action='admin_create', object_type='user', object_id=user.id,
               detail={'email': user.email})
    return user


def delete_user(actor: User, user_id: int) -> None:
    if actor.role != Role.ADMIN:
        raise AuthorizationError('Not authorized')
    target = User.objects.filter(pk=user_id).first()
    if target is None:
        raise NotFoundError('User not found')
    if target.role == Role.ADMIN and not is_main_admin(actor):
        raise AuthorizationError('Only main admin can delete admin users')
    if is_main_admin(target):
        raise AuthorizationError('Main admin cannot be deleted')
    email, role = target.email, target.role
    target.delete()
    stats.invalidate()
    log_action(user=actor, action='user_delete', object_type='user', object_id=user_id,
               detail={'email': email, 'role': role})


def update_profile(user: User, data: dict) -> User:
    changed = []
    for key, field in PROFILE_FIELDS.items():
        if key in data:
            value = data[key]
            if isinstance(value, str):
                value = value.strip()
            setattr(user, field, value)
            changed.append(field)
    if 'password' in data:
        user.set_password(data['password'])
        changed.append('password')
    if changed:
        user.save(update_fields=changed + ['updated_at'])
        log_action(user=user, action='profile_update', object_type='user', object_id=user.id,
                   detail={'fields': [f for f in changed if f != 'password']})
    return user
