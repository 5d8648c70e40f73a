import re

import bleach
from rest_framework import serializers

from portal.models import BLOOD_GROUPS, Role, User

PHONE_RE = re.compile(r'^[0-9]{10}$')
REGISTRABLE_ROLES = [Role.DONOR, Role.HOSPITAL, Role.PATIENT]


def _clean(v):
    return bleach.clean((v or '').strip(), strip=True)


class LoginSerializer(serializers.Serializer):
    email = serializers.CharField()
    password = serializers.CharField(trim_whitespace=False)
    type = serializers.ChoiceField(choices=[r for r, _ in Role.CHOICES])

    def validate_email(self, v):
        v = (v or '').strip().lower()
        if not v:
            raise serializers.ValidationError('Email is required')
        return v

    def validate_password(self, v):
        if not v:
            raise serializers.ValidationError('Password is required')
        return v


class ProfileFieldsMixin(serializers.Serializer):
    phone = serializers.CharField(max_length=10)
    address = serializers.CharField(required=False, allow_blank=True, max_length=255)
    bloodGroup = serializers.ChoiceField(choices=BLOOD_GROUPS, required=False, allow_blank=True)
    dateOfBirth = serializers.DateField(required=False, allow_null=True)
    gender = serializers.ChoiceField(choices=[g for g, _ in User.GENDER_CHOICES], required=False, allow_blank=True)

    def validate_name(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('Name is required')
        return v

    def validate_phone(self, v):
        v = (v or '').strip()
        if not PHONE_RE.match(v):
            raise serializers.ValidationError('Phone number must be exactly 10 digits')
        return v

    def validate_address(self, v):
        return _clean(v)


class RegisterSerializer(ProfileFieldsMixin):
    type = serializers.ChoiceField(choices=REGISTRABLE_ROLES)
    name = serializers.CharField(max_length=255)
    email = serializers.EmailField()
    password = serializers.CharField(min_length=8, trim_whitespace=False, write_only=True,
                                     error_messages={'min_length': 'Password must be at least 8 characters long'})

    def validate_email(self, v):
        return v.strip().lower()

    def validate(self, attrs):
        if attrs['type'] == Role.HOSPITAL and not attrs.get('address'):
            raise serializers.ValidationError({'address': 'Address is required for hospital registration'})
        if attrs['type'] == Role.DONOR and not attrs.get('bloodGroup'):
            raise serializers.ValidationError({'bloodGroup': 'Blood group is required for donor registration'})
        return attrs


class CreateAdminSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    email = serializers.EmailField()
    password = serializers.CharField(min_length=8, trim_whitespace=False, write_only=True,
                                     error_messages={'min_length': 'Password must be at least 8 characters long'})

    def validate_name(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('Name is required')
        return v

    def validate_email(self, v):
        return v.strip().lower()


class ProfileUpdateSerializer(ProfileFieldsMixin):
    """Partial update of the caller's own profile; role and email are not editable."""
    name = serializers.CharField(max_length=255, required=False)
    phone = serializers.CharField(max_length=10, required=False)
    password = serializers.CharField(min_length=8, required=False, trim_whitespace=False, write_only=True)

    def validate(self, attrs):
        user = self.context['user']
        if user.role == Role.HOSPITAL and 'address' in attrs and not attrs['address']:
            raise serializers.ValidationError({'address': 'Address is required for hospitals'})
        if user.role == Role.DONOR and 'bloodGroup' in attrs and not attrs['bloodGroup']:
            raise serializers.ValidationError({'bloodGroup': 'Blood group is required for donors'})
        return attrs


class RefreshSerializer(serializers.Serializer):
    refresh = serializers.CharField()


class LogoutSerializer(serializers.Serializer):
    refresh = serializers.CharField(required=False, allow_blank=True)
