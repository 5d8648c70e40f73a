import bleach
from rest_framework import serializers

from portal.models import BLOOD_GROUPS, EntryStatus, Role, User

URGENCY = ['low', 'medium', 'high', 'critical']
MEDICINE_TYPES = ['tablet', 'capsule', 'syrup', 'injection', 'cream', 'drops']
BED_TYPES = ['general', 'icu', 'emergency', 'maternity', 'pediatric']
DOCTOR_SPECIALTIES = ['general', 'cardiology', 'neurology', 'orthopedic', 'pediatric', 'emergency']
CONTACT_PREFERENCES = ['email', 'phone', 'sms']


class CleanCharField(serializers.CharField):
    """CharField that strips any markup from the submitted text."""

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        return bleach.clean(value, strip=True)


def _text(max_length=500):
    return CleanCharField(required=False, allow_blank=True, max_length=max_length)


class DetailsSerializer(serializers.Serializer):
    urgency = serializers.ChoiceField(choices=URGENCY, default='medium')


# ---------------------------------------------------------------------
# Donation details
# ---------------------------------------------------------------------
class DonationDetailsSerializer(DetailsSerializer):
    availability = _text(255)
    contactPreference = serializers.ChoiceField(choices=CONTACT_PREFERENCES, required=False)
    contactDetails = _text(255)
    address = _text(255)
    notes = _text(2000)


class BloodDonationDetailsSerializer(DonationDetailsSerializer):
    bloodType = serializers.ChoiceField(choices=BLOOD_GROUPS, required=False)
    bloodUnits = serializers.IntegerField(min_value=1, default=1)
    weight = serializers.FloatField(min_value=0, required=False)
    healthStatus = _text(255)
    lastDonationDate = _text(32)
    medications = _text(1000)


class MedicineDonationDetailsSerializer(DonationDetailsSerializer):
    medicineName = _text(255)
    medicineType = serializers.ChoiceField(choices=MEDICINE_TYPES, required=False)
    quantity = serializers.IntegerField(min_value=1, required=False)
    expiryDate = serializers.DateField(required=False)


# ---------------------------------------------------------------------
# Request details
# ---------------------------------------------------------------------
class RequestDetailsSerializer(DetailsSerializer):
    medicalHistory = _text(2000)
    additionalNotes = _text(2000)


class BloodRequestDetailsSerializer(RequestDetailsSerializer):
    bloodType = serializers.ChoiceField(choices=BLOOD_GROUPS, required=False)
    bloodUnits = serializers.IntegerField(min_value=1, default=1)


class MedicineRequestDetailsSerializer(RequestDetailsSerializer):
    medicineName = _text(255)
    medicineType = serializers.ChoiceField(choices=MEDICINE_TYPES, required=False)
    quantity = serializers.IntegerField(min_value=1, required=False)


class BedRequestDetailsSerializer(RequestDetailsSerializer):
    bedType = serializers.ChoiceField(choices=BED_TYPES, required=False)
    duration = serializers.IntegerField(min_value=1, required=False)


class DoctorRequestDetailsSerializer(RequestDetailsSerializer):
    doctorSpecialty = serializers.ChoiceField(choices=DOCTOR_SPECIALTIES, required=False)
    appointmentDate = serializers.DateTimeField(required=False)


# ---------------------------------------------------------------------
# Create payloads: {type, details}
# ---------------------------------------------------------------------
class EntryCreateSerializer(serializers.Serializer):
    DETAIL_SERIALIZERS: dict = {}

    type = serializers.CharField()
    details = serializers.DictField(required=False, default=dict)

    def validate_type(self, v):
        v = (v or '').strip().lower()
        if v not in self.DETAIL_SERIALIZERS:
            raise serializers.ValidationError(
                f"Must be one of: {', '.join(self.DETAIL_SERIALIZERS)}"
            )
        return v

    def validate(self, attrs):
        details = self.DETAIL_SERIALIZERS[attrs['type']](data=attrs.get('details') or {})
        if not details.is_valid():
            raise serializers.ValidationError({'details': details.errors})
        # .data renders dates as ISO strings, ready for the JSON column
        attrs['details'] = dict(details.data)
        return attrs


class DonationCreateSerializer(EntryCreateSerializer):
    DETAIL_SERIALIZERS = {
        'blood': BloodDonationDetailsSerializer,
        'medicine': MedicineDonationDetailsSerializer,
    }


class RequestCreateSerializer(EntryCreateSerializer):
    DETAIL_SERIALIZERS = {
        'blood': BloodRequestDetailsSerializer,
        'medicine': MedicineRequestDetailsSerializer,
        'bed': BedRequestDetailsSerializer,
        'doctor': DoctorRequestDetailsSerializer,
    }


# ---------------------------------------------------------------------
# Status updates
# ---------------------------------------------------------------------
TARGET_STATUSES = [
    EntryStatus.APPROVED,
    EntryStatus.REJECTED,
    EntryStatus.COMPLETED,
    EntryStatus.CANCELLED,
]


class RequestStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=TARGET_STATUSES)
    rejectionReason = CleanCharField(required=False, allow_blank=True, allow_null=True, max_length=500)


class DonationStatusSerializer(RequestStatusSerializer):
    patientId = serializers.PrimaryKeyRelatedField(
        queryset=User.objects.filter(role=Role.PATIENT),
        required=False,
        allow_null=True,
    )
