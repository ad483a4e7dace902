"""
Tests for the role store: create, update, delete, clone.
"""
import pytest

from apps.rbac.exceptions import (
    ImmutableRoleError,
    RoleInUseError,
    RoleNotFoundError,
    ValidationError,
)
from apps.rbac.models import AuditLog, Role, RoleAssignment
from apps.rbac.services import RoleAssignmentService, RoleService


@pytest.mark.django_db
class TestCreateRole:

    def test_create_company_role(self, company, admin_user):
        role = RoleService.create(
            company_id=company.id,
            name='fieldAgent',
            display_name='  Field Agent ',
            permissions=['customer:read', 'customer:read', 'office:read'],
            created_by=admin_user,
        )

        role.refresh_from_db()
        assert role.type == Role.TYPE_COMPANY
        assert role.company_id == company.id
        assert role.display_name == 'Field Agent'
        assert role.permissions == ['customer:read', 'office:read']
        assert AuditLog.objects.filter(action='role_created', target_id=role.id).exists()

    @pytest.mark.parametrize('name', ['', '1role', 'has space', 'dot.name', 'x' * 101])
    def test_rejects_invalid_names(self, company, name):
        with pytest.raises(ValidationError) as exc_info:
            RoleService.create(company.id, name, 'Display', ['customer:read'])
        assert exc_info.value.field == 'name'

    def test_rejects_empty_permissions(self, company):
        with pytest.raises(ValidationError) as exc_info:
            RoleService.create(company.id, 'empty', 'Empty', [])
        assert exc_info.value.field == 'permissions'

    def test_rejects_unknown_permissions(self, company):
        with pytest.raises(ValidationError) as exc_info:
            RoleService.create(company.id, 'bad', 'Bad', ['customer:read', 'customer:fly'])
        assert exc_info.value.details['invalid_permissions'] == ['customer:fly']

    def test_rejects_platform_permissions(self, company):
        with pytest.raises(ValidationError):
            RoleService.create(company.id, 'sneaky', 'Sneaky', ['platform:admin'])

    def test_rejects_blank_display_name(self, company):
        with pytest.raises(ValidationError) as exc_info:
            RoleService.create(company.id, 'blank', '   ', ['customer:read'])
        assert exc_info.value.field == 'display_name'

    def test_name_unique_within_company(self, company, make_role):
        make_role(company, 'manager', ['customer:read'])
        with pytest.raises(ValidationError):
            RoleService.create(company.id, 'manager', 'Manager', ['customer:read'])

    def test_name_cannot_shadow_system_role(self, company, system_roles):
        with pytest.raises(ValidationError):
            RoleService.create(company.id, 'admin', 'My Admin', ['customer:read'])

    def test_same_name_allowed_in_other_company(self, company, other_company, make_role):
        make_role(other_company, 'manager', ['customer:read'])
        role = RoleService.create(company.id, 'manager', 'Manager', ['customer:read'])
        assert role.company_id == company.id

    def test_concurrent_create_maps_to_name_error(self, company, make_role, monkeypatch):
        make_role(company, 'manager', ['customer:read'])
        # The pre-check misses a row another request committed.
        monkeypatch.setattr(RoleService, '_name_taken', staticmethod(lambda name, company_id: False))

        with pytest.raises(ValidationError) as exc_info:
            RoleService.create(company.id, 'manager', 'Manager', ['customer:read'])

        assert exc_info.value.field == 'name'
        assert Role.objects.filter(company=company, name='manager').count() == 1

    def test_concurrent_global_create_maps_to_name_error(self, system_roles, monkeypatch):
        monkeypatch.setattr(RoleService, '_name_taken', staticmethod(lambda name, company_id: False))

        with pytest.raises(ValidationError) as exc_info:
            RoleService.create_global_role(Role.TYPE_SYSTEM, 'viewer', 'Viewer', ['customer:read'])

        assert exc_info.value.field == 'name'
        assert Role.objects.filter(company__isnull=True, name='viewer').count() == 1


@pytest.mark.django_db
class TestUpdateRole:

    def test_update_fields(self, company, make_role):
        role = make_role(company, 'manager', ['customer:read'])

        updated = RoleService.update(role.id, company.id, {
            'display_name': 'Team Manager',
            'description': 'Runs a team',
            'permissions': ['customer:*'],
            'is_default': True,
        })

        assert updated.display_name == 'Team Manager'
        assert updated.description == 'Runs a team'
        assert updated.permissions == ['customer:*']
        assert updated.is_default is True

    def test_name_cannot_change(self, company, make_role):
        role = make_role(company, 'manager', ['customer:read'])
        with pytest.raises(ValidationError) as exc_info:
            RoleService.update(role.id, company.id, {'name': 'boss'})
        assert exc_info.value.field == 'name'

    def test_same_name_in_patch_is_accepted(self, company, make_role):
        role = make_role(company, 'manager', ['customer:read'])
        updated = RoleService.update(role.id, company.id, {'name': 'manager', 'description': 'x'})
        assert updated.description == 'x'

    def test_unknown_field_rejected(self, company, make_role):
        role = make_role(company, 'manager', ['customer:read'])
        with pytest.raises(ValidationError):
            RoleService.update(role.id, company.id, {'type': 'system'})

    def test_system_role_is_immutable(self, company, system_roles):
        with pytest.raises(ImmutableRoleError):
            RoleService.update(system_roles['viewer'].id, company.id, {'display_name': 'Reader'})

    def test_other_company_role_is_not_found(self, company, other_company, make_role):
        role = make_role(other_company, 'manager', ['customer:read'])
        with pytest.raises(RoleNotFoundError):
            RoleService.update(role.id, company.id, {'display_name': 'Stolen'})

    def test_permission_change_reaches_holders(self, company, member, make_role, grant):
        role = make_role(company, 'manager', ['customer:read'])
        grant(member, role, company)
        assert RoleAssignmentService.effective_permissions(member.id, company.id) == {'customer:read'}

        RoleService.update(role.id, company.id, {'permissions': ['report:read']})

        assert RoleAssignmentService.effective_permissions(member.id, company.id) == {'report:read'}


@pytest.mark.django_db
class TestDeleteRole:

    def test_delete_unused_role(self, company, make_role):
        role = make_role(company, 'temp', ['customer:read'])
        result = RoleService.delete(role.id, company.id)
        assert result == {'assignments_removed': 0}
        assert not Role.objects.filter(id=role.id).exists()

    def test_delete_in_use_role_without_force(self, company, member, make_role, grant):
        role = make_role(company, 'temp', ['customer:read'])
        grant(member, role, company)

        with pytest.raises(RoleInUseError) as exc_info:
            RoleService.delete(role.id, company.id)

        assert exc_info.value.assignment_count == 1
        assert Role.objects.filter(id=role.id).exists()
        assert RoleAssignment.objects.filter(role=role).count() == 1

    def test_force_delete_removes_assignments(self, company, member, make_role, grant):
        role = make_role(company, 'temp', ['customer:read'])
        grant(member, role, company)
        assert RoleAssignmentService.effective_permissions(member.id, company.id) == {'customer:read'}

        result = RoleService.delete(role.id, company.id, force=True)

        assert result == {'assignments_removed': 1}
        assert not RoleAssignment.objects.filter(user=member).exists()
        assert RoleAssignmentService.effective_permissions(member.id, company.id) == frozenset()

    def test_system_role_cannot_be_deleted(self, company, system_roles):
        with pytest.raises(ImmutableRoleError):
            RoleService.delete(system_roles['admin'].id, company.id, force=True)
        assert Role.objects.filter(id=system_roles['admin'].id).exists()

    def test_role_row_restricts_stray_delete(self, company, member, make_role, grant):
        from django.db.models.deletion import RestrictedError

        role = make_role(company, 'temp', ['customer:read'])
        grant(member, role, company)
        with pytest.raises(RestrictedError):
            role.delete()


@pytest.mark.django_db
class TestCloneRole:

    def test_clone_system_role(self, company, system_roles):
        source = system_roles['salesRep']
        clone = RoleService.clone(source.id, company.id)

        assert clone.type == Role.TYPE_COMPANY
        assert clone.company_id == company.id
        assert clone.name == 'salesRep_copy'
        assert clone.permissions == source.permissions
        assert clone.is_default is False

        source.refresh_from_db()
        assert source.type == Role.TYPE_SYSTEM

    def test_clone_names_increment(self, company, system_roles):
        source = system_roles['viewer']
        first = RoleService.clone(source.id, company.id)
        second = RoleService.clone(source.id, company.id)
        third = RoleService.clone(source.id, company.id)
        assert [first.name, second.name, third.name] == ['viewer_copy', 'viewer_copy2', 'viewer_copy3']

    def test_clone_with_explicit_name(self, company, make_role):
        source = make_role(company, 'manager', ['customer:read'])
        clone = RoleService.clone(source.id, company.id, name='manager2', display_name='Manager 2')
        assert clone.name == 'manager2'
        assert clone.display_name == 'Manager 2'

    def test_cannot_clone_other_company_role(self, company, other_company, make_role):
        source = make_role(other_company, 'secret', ['customer:read'])
        with pytest.raises(RoleNotFoundError):
            RoleService.clone(source.id, company.id)

    def test_cannot_clone_platform_role(self, company, system_roles):
        with pytest.raises(RoleNotFoundError):
            RoleService.clone(system_roles['platformAdmin'].id, company.id)


@pytest.mark.django_db
class TestListRoles:

    def test_lists_system_and_own_roles_only(self, company, other_company, system_roles, make_role):
        own = make_role(company, 'mine', ['customer:read'])
        make_role(other_company, 'theirs', ['customer:read'])

        names = {role.name for role in RoleService.list_for_company(company.id)}

        assert own.name in names
        assert 'theirs' not in names
        assert 'platformAdmin' not in names
        assert {'superUser', 'admin', 'salesRep', 'viewer'} <= names

    def test_assignment_counts_are_per_company(self, company, other_company, system_roles, make_user, grant):
        viewer = system_roles['viewer']
        user = make_user('both@example.com', companies=[company, other_company])
        grant(user, viewer, company)
        grant(user, viewer, other_company)

        counts = {role.name: role.assignment_count for role in RoleService.list_for_company(company.id)}
        assert counts['viewer'] == 1


@pytest.mark.django_db
class TestPlatformRoles:

    def test_create_platform_role(self, system_roles, admin_user):
        role = RoleService.create_platform_role(
            'supportAgent',
            'Support Agent',
            ['platform:view_companies', 'platform:view_audit_logs'],
            created_by=admin_user,
        )

        assert role.type == Role.TYPE_PLATFORM
        assert role.company_id is None
        assert AuditLog.objects.filter(action='platform_role_created', target_id=role.id).exists()

    def test_create_requires_a_platform_permission(self, system_roles):
        with pytest.raises(ValidationError) as exc_info:
            RoleService.create_platform_role('notPlatform', 'Not Platform', ['customer:read'])
        assert exc_info.value.field == 'permissions'

    def test_duplicate_name_rejected(self, system_roles):
        with pytest.raises(ValidationError) as exc_info:
            RoleService.create_platform_role('platformAdmin', 'Again', ['platform:admin'])
        assert exc_info.value.field == 'name'

    def test_list_counts_holders(self, system_roles, member):
        RoleAssignmentService.assign_platform_role(member.id, system_roles['platformAdmin'].id)

        roles = {role.name: role for role in RoleService.list_platform_roles()}

        assert roles['platformAdmin'].user_count == 1
        assert 'admin' not in roles

    def test_update_keeps_a_platform_permission(self, system_roles):
        role = RoleService.create_platform_role('auditor', 'Auditor', ['platform:view_audit_logs'])

        updated = RoleService.update_platform_role(role.id, {'display_name': 'Log Auditor'})
        assert updated.display_name == 'Log Auditor'

        with pytest.raises(ValidationError):
            RoleService.update_platform_role(role.id, {'permissions': ['customer:read']})

    def test_company_role_is_not_a_platform_role(self, company, make_role):
        role = make_role(company, 'manager', ['customer:read'])
        with pytest.raises(RoleNotFoundError):
            RoleService.update_platform_role(role.id, {'display_name': 'Nope'})
        with pytest.raises(RoleNotFoundError):
            RoleService.delete_platform_role(role.id)

    def test_delete_blocked_while_held(self, system_roles, member):
        role = RoleService.create_platform_role('auditor', 'Auditor', ['platform:view_audit_logs'])
        RoleAssignmentService.assign_platform_role(member.id, role.id)

        with pytest.raises(RoleInUseError):
            RoleService.delete_platform_role(role.id)

        RoleAssignmentService.clear_platform_role(member.id)
        RoleService.delete_platform_role(role.id)
        assert not Role.objects.filter(id=role.id).exists()
