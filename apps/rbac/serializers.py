"""
RBAC serializers for REST API endpoints.

Input serializers only check request shape; business rules (name
uniqueness, permission validity, company scoping) live in the services.
"""
from rest_framework import serializers

from apps.companies.models import Company, Office
from apps.rbac import permissions as perms
from apps.rbac.models import CompanyMembership, Invite, Role, User


# ===== PERMISSIONS =====

class PermissionMetaSerializer(serializers.Serializer):
    """Catalog entry."""

    code = serializers.CharField()
    label = serializers.CharField()
    category = serializers.CharField()
    description = serializers.CharField()


class PermissionSnapshotSerializer(serializers.Serializer):
    """Advisory effective-permission list for UI affordances."""

    company_id = serializers.UUIDField()
    permissions = serializers.ListField(child=serializers.CharField())
    advisory = serializers.BooleanField()


# ===== ROLES =====

class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role model."""

    permission_labels = serializers.SerializerMethodField()
    assignment_count = serializers.IntegerField(read_only=True, required=False)

    class Meta:
        model = Role
        fields = [
            'id', 'name', 'display_name', 'description', 'type', 'company',
            'permissions', 'permission_labels', 'is_default', 'assignment_count',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_permission_labels(self, obj):
        return {code: perms.label_for(code) for code in obj.permissions or []}


class RoleCreateSerializer(serializers.Serializer):
    """Payload for creating a company role."""

    name = serializers.CharField(max_length=100)
    display_name = serializers.CharField(max_length=255)
    description = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')
    permissions = serializers.ListField(child=serializers.CharField(allow_blank=True), allow_empty=False)
    is_default = serializers.BooleanField(required=False, default=False)


class RoleUpdateSerializer(serializers.Serializer):
    """Partial update payload. ``name`` is accepted only to reject changes to it."""

    name = serializers.CharField(max_length=100, required=False)
    display_name = serializers.CharField(max_length=255, required=False)
    description = serializers.CharField(max_length=500, required=False, allow_blank=True)
    permissions = serializers.ListField(child=serializers.CharField(allow_blank=True), required=False)
    is_default = serializers.BooleanField(required=False)


class RoleCloneSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100, required=False)
    display_name = serializers.CharField(max_length=255, required=False)
    description = serializers.CharField(max_length=500, required=False, allow_blank=True)


class RoleAssignmentRequestSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()
    role_id = serializers.UUIDField()


class BulkRoleAssignmentSerializer(serializers.Serializer):
    assignments = RoleAssignmentRequestSerializer(many=True, allow_empty=False)


# ===== USERS & OFFICES =====

class UserSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'email', 'first_name', 'last_name', 'is_active', 'current_office']
        read_only_fields = fields


class OfficeSerializer(serializers.ModelSerializer):
    class Meta:
        model = Office
        fields = ['id', 'name', 'company', 'is_active', 'created_at']
        read_only_fields = fields


class OfficeGrantSerializer(serializers.Serializer):
    office_id = serializers.UUIDField()


class CurrentOfficeSerializer(serializers.Serializer):
    office_id = serializers.UUIDField(allow_null=True)


class MemberStatusSerializer(serializers.Serializer):
    is_active = serializers.BooleanField()


# ===== MEMBERSHIPS =====

class CompanySummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Company
        fields = ['id', 'name', 'slug']
        read_only_fields = fields


class MembershipSerializer(serializers.ModelSerializer):
    """A company the caller belongs to."""

    company = CompanySummarySerializer(read_only=True)

    class Meta:
        model = CompanyMembership
        fields = ['company', 'is_active', 'joined_at', 'last_accessed_at']
        read_only_fields = fields


class SwitchCompanySerializer(serializers.Serializer):
    company_id = serializers.UUIDField()


# ===== PLATFORM ROLES =====

class PlatformRoleSerializer(RoleSerializer):
    assignment_count = None
    user_count = serializers.IntegerField(read_only=True, required=False)

    class Meta(RoleSerializer.Meta):
        fields = [
            'id', 'name', 'display_name', 'description', 'type',
            'permissions', 'permission_labels', 'user_count',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class PlatformRoleCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    display_name = serializers.CharField(max_length=255)
    description = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')
    permissions = serializers.ListField(child=serializers.CharField(allow_blank=True), allow_empty=False)


class PlatformRoleUpdateSerializer(serializers.Serializer):
    display_name = serializers.CharField(max_length=255, required=False)
    description = serializers.CharField(max_length=500, required=False, allow_blank=True)
    permissions = serializers.ListField(child=serializers.CharField(allow_blank=True), required=False)


class PlatformRoleGrantSerializer(serializers.Serializer):
    role_id = serializers.UUIDField()


# ===== INVITES =====

class InviteSerializer(serializers.ModelSerializer):
    """Invite as seen by company admins. The token is never exposed."""

    roles = serializers.PrimaryKeyRelatedField(many=True, read_only=True)
    allowed_office_ids = serializers.PrimaryKeyRelatedField(source='allowed_offices', many=True, read_only=True)
    current_office_id = serializers.UUIDField(read_only=True)
    invited_by = serializers.UUIDField(source='invited_by_id', read_only=True)
    is_expired = serializers.BooleanField(read_only=True)

    class Meta:
        model = Invite
        fields = [
            'id', 'email', 'roles', 'current_office_id', 'allowed_office_ids',
            'status', 'is_existing_user_invite', 'is_expired', 'expires_at',
            'invited_by', 'accepted_at', 'created_at',
        ]
        read_only_fields = fields


class InviteCreateSerializer(serializers.Serializer):
    email = serializers.EmailField()
    roles = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)
    current_office_id = serializers.UUIDField()
    allowed_office_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)

    def validate(self, attrs):
        if attrs['current_office_id'] not in attrs['allowed_office_ids']:
            raise serializers.ValidationError(
                {'current_office_id': 'Current office must be one of the allowed offices.'}
            )
        return attrs


class InviteResendSerializer(serializers.Serializer):
    roles = serializers.ListField(child=serializers.UUIDField(), allow_empty=False, required=False)
    current_office_id = serializers.UUIDField(required=False)
    allowed_office_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False, required=False)


class InvitePreviewSerializer(serializers.ModelSerializer):
    """What an invitee sees before accepting."""

    company_name = serializers.CharField(source='company.name', read_only=True)

    class Meta:
        model = Invite
        fields = ['email', 'company_name', 'expires_at', 'is_existing_user_invite']
        read_only_fields = fields


class InviteAcceptSerializer(serializers.Serializer):
    token = serializers.CharField()
    password = serializers.CharField(
        required=False,
        allow_blank=True,
        write_only=True,
        style={'input_type': 'password'},
    )
    first_name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    last_name = serializers.CharField(max_length=100, required=False, allow_blank=True)
