"""
Django admin registrations for the portal models.

Superusers can inspect users, entries and their rejection rows, and the
audit trail under ``/admin/``.  Rejection rows are shown read-only.
"""

from django.contrib import admin

from .models import (
    AuditEvent,
    Donation,
    DonationRejection,
    RequestRejection,
    ResourceRequest,
    User,
)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('email', 'name', 'role', 'status', 'login_attempts', 'lock_until', 'date_joined')
    list_filter = ('role', 'status')
    search_fields = ('email', 'name', 'phone')
    exclude = ('password',)


class DonationRejectionInline(admin.TabularInline):
    model = DonationRejection
    extra = 0
    can_delete = False
    readonly_fields = ('hospital', 'hospital_name', 'reason', 'created_at')


class RequestRejectionInline(admin.TabularInline):
    model = RequestRejection
    extra = 0
    can_delete = False
    readonly_fields = ('hospital', 'hospital_name', 'reason', 'created_at')


@admin.register(Donation)
class DonationAdmin(admin.ModelAdmin):
    list_display = ('id', 'kind', 'status', 'donor', 'assigned_hospital', 'patient', 'created_at')
    list_filter = ('status', 'kind')
    search_fields = ('donor__email', 'contact_name', 'assigned_hospital_name', 'patient_name')
    readonly_fields = ('version', 'approved_at', 'completed_at', 'created_at', 'updated_at')
    inlines = [DonationRejectionInline]


@admin.register(ResourceRequest)
class ResourceRequestAdmin(admin.ModelAdmin):
    list_display = ('id', 'kind', 'status', 'patient', 'assigned_hospital', 'created_at')
    list_filter = ('status', 'kind')
    search_fields = ('patient__email', 'contact_name', 'assigned_hospital_name')
    readonly_fields = ('version', 'approved_at', 'completed_at', 'created_at', 'updated_at')
    inlines = [RequestRejectionInline]


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('action', 'user', 'object_type', 'object_id', 'created_at')
    list_filter = ('action', 'object_type')
    search_fields = ('object_id', 'user__email')
