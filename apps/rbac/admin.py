"""
Django admin configuration for RBAC app.
"""
from django.contrib import admin

from .models import AuditLog, CompanyMembership, Invite, OfficeAccess, Role, RoleAssignment, User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    """Admin for the email-identified User model. Password hashes are never editable here."""
    list_display = ['email', 'first_name', 'last_name', 'is_active', 'is_superuser', 'current_office', 'created_at']
    list_filter = ['is_active', 'is_superuser', 'email_verified']
    search_fields = ['email', 'first_name', 'last_name']
    ordering = ['-created_at']
    exclude = ['password_hash']
    readonly_fields = ['created_at', 'updated_at', 'last_login_at', 'deleted_at']
    raw_id_fields = ['current_office', 'platform_role']


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ['name', 'display_name', 'type', 'company', 'is_default', 'created_at']
    list_filter = ['type', 'is_default']
    search_fields = ['name', 'display_name']
    raw_id_fields = ['company']


@admin.register(RoleAssignment)
class RoleAssignmentAdmin(admin.ModelAdmin):
    list_display = ['user', 'role', 'company', 'assigned_at', 'assigned_by']
    search_fields = ['user__email', 'role__name']
    raw_id_fields = ['user', 'role', 'company', 'assigned_by']


@admin.register(CompanyMembership)
class CompanyMembershipAdmin(admin.ModelAdmin):
    list_display = ['user', 'company', 'is_active', 'joined_at']
    list_filter = ['is_active']
    search_fields = ['user__email', 'company__name']
    raw_id_fields = ['user', 'company', 'invited_by']


@admin.register(OfficeAccess)
class OfficeAccessAdmin(admin.ModelAdmin):
    list_display = ['user', 'office', 'assigned_at']
    search_fields = ['user__email', 'office__name']
    raw_id_fields = ['user', 'office', 'assigned_by']


@admin.register(Invite)
class InviteAdmin(admin.ModelAdmin):
    list_display = ['email', 'company', 'status', 'expires_at', 'invited_by', 'created_at']
    list_filter = ['status']
    search_fields = ['email']
    exclude = ['token_hash']
    readonly_fields = ['accepted_at', 'accepted_user', 'revoked_at']


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ['action', 'user', 'company', 'target_type', 'target_id', 'created_at']
    list_filter = ['action', 'target_type']
    search_fields = ['action', 'user__email']
    readonly_fields = [field.name for field in AuditLog._meta.fields]
