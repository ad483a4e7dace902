"""
API tests for the RBAC endpoints: status codes, error envelope and
company scoping through the X-COMPANY-ID header.
"""
import uuid

import pytest
from django.core import mail

from apps.rbac.models import CompanyMembership, Invite, RoleAssignment
from apps.rbac.services import InviteService, OfficeAccessService


@pytest.mark.django_db
class TestCompanyContext:

    def test_missing_company_header(self, api_client, admin_user):
        api_client.force_authenticate(user=admin_user)

        response = api_client.get('/v1/roles')

        assert response.status_code == 403
        body = response.json()
        assert body['error']['code'] == 'PERMISSION_DENIED'
        assert body['error']['details']['reason'] == 'no_company'
        assert 'request_id' in body

    def test_malformed_company_header(self, api_client, admin_user):
        api_client.force_authenticate(user=admin_user)
        response = api_client.get('/v1/roles', HTTP_X_COMPANY_ID='not-a-uuid')
        assert response.status_code == 403

    def test_not_a_member(self, api_client, admin_user, other_company):
        api_client.force_authenticate(user=admin_user)

        response = api_client.get('/v1/roles', HTTP_X_COMPANY_ID=str(other_company.id))

        assert response.status_code == 403
        assert response.json()['error']['details']['reason'] == 'not_a_member'

    def test_unauthenticated(self, company_client):
        response = company_client.get('/v1/roles')
        assert response.status_code in (401, 403)
        assert 'error' in response.json()

    def test_request_id_header_echoed(self, company_client, admin_user):
        response = company_client.as_user(admin_user).get('/v1/roles', HTTP_X_REQUEST_ID='req-123')
        assert response['X-Request-ID'] == 'req-123'


@pytest.mark.django_db
class TestPermissionEndpoints:

    def test_catalog(self, company_client, member):
        response = company_client.as_user(member).get('/v1/permissions')

        assert response.status_code == 200
        data = response.json()
        assert data['count'] > 0
        categories = {group['category'] for group in data['categories']}
        assert 'Customers' in categories

    def test_my_permissions(self, company_client, admin_user, company):
        response = company_client.as_user(admin_user).get('/v1/me/permissions')

        assert response.status_code == 200
        data = response.json()
        assert data['company_id'] == str(company.id)
        assert data['advisory'] is True
        assert 'role:*' in data['permissions']

    def test_my_permissions_without_roles(self, company_client, member):
        response = company_client.as_user(member).get('/v1/me/permissions')
        assert response.json()['permissions'] == []


@pytest.mark.django_db
class TestRoleEndpoints:

    def test_list_roles(self, company_client, admin_user):
        response = company_client.as_user(admin_user).get('/v1/roles')

        assert response.status_code == 200
        names = {role['name'] for role in response.json()['roles']}
        assert 'admin' in names
        assert 'platformAdmin' not in names

    def test_list_roles_filtered_by_type(self, company_client, admin_user, company, make_role):
        make_role(company, 'custom', ['customer:read'])

        response = company_client.as_user(admin_user).get('/v1/roles', {'type': 'company'})

        assert [role['name'] for role in response.json()['roles']] == ['custom']

    def test_member_without_permission_is_denied(self, company_client, member):
        response = company_client.as_user(member).get('/v1/roles')

        assert response.status_code == 403
        details = response.json()['error']['details']
        assert details['reason'] == 'missing_permissions'
        assert details['missing'] == ['role:read']

    def test_create_role(self, company_client, admin_user, company):
        response = company_client.as_user(admin_user).post('/v1/roles', {
            'name': 'fieldAgent',
            'display_name': 'Field Agent',
            'permissions': ['customer:read', 'office:read'],
        }, format='json')

        assert response.status_code == 201
        data = response.json()
        assert data['type'] == 'company'
        assert data['company'] == str(company.id)
        assert data['permission_labels']['customer:read'] == 'View Customers'

    def test_create_role_with_invalid_permission(self, company_client, admin_user):
        response = company_client.as_user(admin_user).post('/v1/roles', {
            'name': 'bad',
            'display_name': 'Bad',
            'permissions': ['customer:fly'],
        }, format='json')

        assert response.status_code == 400
        error = response.json()['error']
        assert error['code'] == 'VALIDATION_ERROR'
        assert error['details']['invalid_permissions'] == ['customer:fly']

    def test_create_role_missing_fields(self, company_client, admin_user):
        response = company_client.as_user(admin_user).post('/v1/roles', {'name': 'x'}, format='json')

        assert response.status_code == 400
        assert 'display_name' in response.json()['error']['details']

    def test_update_system_role_is_forbidden(self, company_client, admin_user, system_roles):
        response = company_client.as_user(admin_user).patch(
            f"/v1/roles/{system_roles['viewer'].id}", {'display_name': 'Reader'}, format='json'
        )

        assert response.status_code == 403
        assert response.json()['error']['code'] == 'IMMUTABLE_ROLE'

    def test_update_company_role(self, company_client, admin_user, company, make_role):
        role = make_role(company, 'custom', ['customer:read'])

        response = company_client.as_user(admin_user).patch(
            f'/v1/roles/{role.id}', {'permissions': ['report:read']}, format='json'
        )

        assert response.status_code == 200
        assert response.json()['permissions'] == ['report:read']

    def test_other_company_role_is_404(self, company_client, admin_user, other_company, make_role):
        foreign = make_role(other_company, 'foreign', ['customer:read'])

        response = company_client.as_user(admin_user).get(f'/v1/roles/{foreign.id}')

        assert response.status_code == 404
        assert response.json()['error']['code'] == 'ROLE_NOT_FOUND'

    def test_delete_in_use_role_conflict_then_force(self, company_client, admin_user, member, company,
                                                    make_role, grant):
        role = make_role(company, 'custom', ['customer:read'])
        grant(member, role, company)
        client = company_client.as_user(admin_user)

        conflict = client.delete(f'/v1/roles/{role.id}')
        assert conflict.status_code == 409
        assert conflict.json()['error']['details']['assignment_count'] == 1

        forced = client.delete(f'/v1/roles/{role.id}?force=true')
        assert forced.status_code == 200
        assert forced.json() == {'assignments_removed': 1}

    def test_clone_role(self, company_client, admin_user, system_roles):
        response = company_client.as_user(admin_user).post(
            f"/v1/roles/{system_roles['viewer'].id}/clone", {}, format='json'
        )

        assert response.status_code == 201
        assert response.json()['name'] == 'viewer_copy'


@pytest.mark.django_db
class TestAssignmentEndpoints:

    def test_assign_then_reassign(self, company_client, admin_user, member, system_roles):
        client = company_client.as_user(admin_user)
        payload = {'user_id': str(member.id), 'role_id': str(system_roles['viewer'].id)}

        first = client.post('/v1/roles/assign', payload, format='json')
        second = client.post('/v1/roles/assign', payload, format='json')

        assert first.status_code == 201
        assert first.json()['created'] is True
        assert second.status_code == 200
        assert second.json()['created'] is False

    def test_assign_cross_company_role(self, company_client, admin_user, member, other_company, make_role):
        foreign = make_role(other_company, 'foreign', ['customer:*'])

        response = company_client.as_user(admin_user).post('/v1/roles/assign', {
            'user_id': str(member.id), 'role_id': str(foreign.id)
        }, format='json')

        assert response.status_code == 403
        assert response.json()['error']['code'] == 'CROSS_COMPANY_ROLE'
        assert not RoleAssignment.objects.filter(user=member).exists()

    def test_assign_to_non_member(self, company_client, admin_user, make_user, system_roles):
        outsider = make_user('outsider@example.com')

        response = company_client.as_user(admin_user).post('/v1/roles/assign', {
            'user_id': str(outsider.id), 'role_id': str(system_roles['viewer'].id)
        }, format='json')

        assert response.status_code == 404
        assert response.json()['error']['code'] == 'USER_NOT_FOUND'

    def test_revoke(self, company_client, admin_user, member, company, system_roles, grant):
        grant(member, system_roles['viewer'], company)
        payload = {'user_id': str(member.id), 'role_id': str(system_roles['viewer'].id)}
        client = company_client.as_user(admin_user)

        assert client.post('/v1/roles/revoke', payload, format='json').json() == {'removed': True}
        assert client.post('/v1/roles/revoke', payload, format='json').json() == {'removed': False}

    def test_bulk_assign(self, company_client, admin_user, member, system_roles):
        response = company_client.as_user(admin_user).post('/v1/roles/assign/bulk', {
            'assignments': [
                {'user_id': str(member.id), 'role_id': str(system_roles['viewer'].id)},
                {'user_id': str(member.id), 'role_id': str(uuid.uuid4())},
            ]
        }, format='json')

        assert response.status_code == 200
        data = response.json()
        assert data['succeeded'] == 1
        assert data['failed'] == 1
        assert data['results'][1]['error']['code'] == 'ROLE_NOT_FOUND'

    def test_user_roles(self, company_client, admin_user, member, company, system_roles, grant):
        grant(member, system_roles['viewer'], company)

        response = company_client.as_user(admin_user).get(f'/v1/users/{member.id}/roles')

        assert response.status_code == 200
        data = response.json()
        assert [role['name'] for role in data['roles']] == ['viewer']
        assert 'customer:read' in data['permissions']


@pytest.mark.django_db
class TestOfficeEndpoints:

    def test_grant_list_and_revoke(self, company_client, admin_user, member, office):
        client = company_client.as_user(admin_user)

        granted = client.post(f'/v1/users/{member.id}/offices', {'office_id': str(office.id)}, format='json')
        again = client.post(f'/v1/users/{member.id}/offices', {'office_id': str(office.id)}, format='json')
        listed = client.get(f'/v1/users/{member.id}/offices')

        assert granted.status_code == 201
        assert again.status_code == 200
        assert [item['id'] for item in listed.json()['offices']] == [str(office.id)]

        revoked = client.delete(f'/v1/users/{member.id}/offices/{office.id}')
        assert revoked.status_code == 204
        assert not OfficeAccessService.has_access(member.id, office.id)

    def test_grant_other_company_office(self, company_client, admin_user, member, other_office):
        response = company_client.as_user(admin_user).post(
            f'/v1/users/{member.id}/offices', {'office_id': str(other_office.id)}, format='json'
        )
        assert response.status_code == 404
        assert response.json()['error']['code'] == 'OFFICE_NOT_FOUND'

    def test_set_current_office(self, company_client, admin_user, member, office, second_office):
        OfficeAccessService.grant(member.id, office.id)
        client = company_client.as_user(admin_user)

        allowed = client.put(f'/v1/users/{member.id}/current-office', {'office_id': str(office.id)},
                             format='json')
        denied = client.put(f'/v1/users/{member.id}/current-office', {'office_id': str(second_office.id)},
                            format='json')

        assert allowed.status_code == 200
        assert allowed.json()['current_office'] == str(office.id)
        assert denied.status_code == 400
        assert denied.json()['error']['code'] == 'OFFICE_NOT_ALLOWED'

    def test_list_and_delete_company_offices(self, company_client, admin_user, office, other_office):
        client = company_client.as_user(admin_user)

        listed = client.get('/v1/offices')
        assert [item['id'] for item in listed.json()['offices']] == [str(office.id)]

        deleted = client.delete(f'/v1/offices/{office.id}')
        assert deleted.status_code == 200
        assert deleted.json() == {'access_removed': 0, 'current_cleared': 0}

        assert client.delete(f'/v1/offices/{other_office.id}').status_code == 404

    def test_office_list_hides_foreign_current_office(self, company_client, admin_user, make_user, company,
                                                      other_company, office, other_office):
        split = make_user('split@example.com', companies=[company, other_company])
        OfficeAccessService.grant(split.id, office.id)
        OfficeAccessService.grant(split.id, other_office.id)
        OfficeAccessService.set_current(split.id, other_office.id)

        response = company_client.as_user(admin_user).get(f'/v1/users/{split.id}/offices')

        assert response.status_code == 200
        assert response.json()['current_office_id'] is None
        assert [item['id'] for item in response.json()['offices']] == [str(office.id)]

        OfficeAccessService.set_current(split.id, office.id)
        response = company_client.as_user(admin_user).get(f'/v1/users/{split.id}/offices')
        assert response.json()['current_office_id'] == str(office.id)


@pytest.mark.django_db
class TestInviteEndpoints:

    @pytest.fixture
    def invite_payload(self, system_roles, office):
        return {
            'email': 'newbie@example.com',
            'roles': [str(system_roles['viewer'].id)],
            'allowed_office_ids': [str(office.id)],
            'current_office_id': str(office.id),
        }

    def test_create_invite(self, company_client, admin_user, invite_payload, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            response = company_client.as_user(admin_user).post('/v1/invites', invite_payload, format='json')

        assert response.status_code == 201
        data = response.json()
        assert data['email'] == 'newbie@example.com'
        assert data['status'] == 'pending'
        assert 'token' not in data
        assert 'token_hash' not in data
        assert len(mail.outbox) == 1

    def test_duplicate_invite(self, company_client, admin_user, invite_payload):
        client = company_client.as_user(admin_user)
        first = client.post('/v1/invites', invite_payload, format='json')

        second = client.post('/v1/invites', invite_payload, format='json')

        assert second.status_code == 409
        error = second.json()['error']
        assert error['code'] == 'DUPLICATE_INVITE'
        assert error['details']['existing_invite_id'] == first.json()['id']

    def test_current_office_outside_allowed(self, company_client, admin_user, invite_payload, second_office):
        invite_payload['current_office_id'] = str(second_office.id)

        response = company_client.as_user(admin_user).post('/v1/invites', invite_payload, format='json')

        assert response.status_code == 400

    def test_list_resend_and_revoke(self, company_client, admin_user, invite_payload):
        client = company_client.as_user(admin_user)
        invite_id = client.post('/v1/invites', invite_payload, format='json').json()['id']

        listed = client.get('/v1/invites')
        assert listed.json()['count'] == 1

        resent = client.post(f'/v1/invites/{invite_id}/resend', {}, format='json')
        assert resent.status_code == 200
        assert resent.json()['id'] == invite_id

        revoked = client.delete(f'/v1/invites/{invite_id}')
        assert revoked.status_code == 200
        assert revoked.json()['status'] == 'revoked'

        assert client.delete(f'/v1/invites/{invite_id}').status_code == 409

    def test_viewer_cannot_invite(self, company_client, make_user, company, system_roles, grant,
                                  invite_payload):
        viewer = make_user('viewer@acme.test', companies=[company])
        grant(viewer, system_roles['viewer'], company)

        response = company_client.as_user(viewer).post('/v1/invites', invite_payload, format='json')

        assert response.status_code == 403
        assert response.json()['error']['details']['missing'] == ['user:create']


@pytest.mark.django_db
class TestPublicInviteFlow:

    @pytest.fixture
    def token(self, company, office, system_roles, admin_user):
        _, raw_token = InviteService.create(
            company_id=company.id,
            email='public@example.com',
            role_ids=[system_roles['viewer'].id],
            allowed_office_ids=[office.id],
            current_office_id=office.id,
            invited_by=admin_user,
        )
        return raw_token

    def test_validate(self, api_client, token):
        response = api_client.get('/v1/invites/validate', {'token': token})

        assert response.status_code == 200
        data = response.json()
        assert data['email'] == 'public@example.com'
        assert data['company_name'] == 'Acme'
        assert data['is_existing_user_invite'] is False

    def test_validate_unknown_token(self, api_client, db):
        response = api_client.get('/v1/invites/validate', {'token': 'nope'})
        assert response.status_code == 404
        assert response.json()['error']['code'] == 'INVITE_NOT_FOUND'

    def test_accept(self, api_client, token, office):
        response = api_client.post('/v1/invites/accept', {
            'token': token,
            'password': 'long-enough-pw',
            'first_name': 'Pub',
        }, format='json')

        assert response.status_code == 200
        data = response.json()
        assert data['email'] == 'public@example.com'
        assert data['current_office'] == str(office.id)
        assert Invite.objects.get(email='public@example.com').status == Invite.STATUS_ACCEPTED

    def test_accept_twice_conflicts(self, api_client, token):
        payload = {'token': token, 'password': 'long-enough-pw'}
        api_client.post('/v1/invites/accept', payload, format='json')

        response = api_client.post('/v1/invites/accept', payload, format='json')

        assert response.status_code == 409
        assert response.json()['error']['code'] == 'INVITE_CONSUMED'

    def test_accept_expired(self, api_client, token):
        from datetime import timedelta
        from django.utils import timezone

        Invite.objects.update(expires_at=timezone.now() - timedelta(seconds=1))

        response = api_client.post('/v1/invites/accept', {'token': token, 'password': 'long-enough-pw'},
                                   format='json')

        assert response.status_code == 410
        assert response.json()['error']['code'] == 'INVITE_EXPIRED'


@pytest.mark.django_db
class TestMemberEndpoints:

    def test_deactivate_and_reactivate(self, company_client, admin_user, member, company):
        client = company_client.as_user(admin_user)

        off = client.post(f'/v1/users/{member.id}/activate', {'is_active': False}, format='json')
        assert off.status_code == 200
        assert off.json() == {'user_id': str(member.id), 'is_active': False}
        assert not CompanyMembership.objects.is_member(member.id, company.id)

        on = client.post(f'/v1/users/{member.id}/activate', {'is_active': True}, format='json')
        assert on.json()['is_active'] is True

    def test_cannot_deactivate_self(self, company_client, admin_user):
        response = company_client.as_user(admin_user).post(
            f'/v1/users/{admin_user.id}/activate', {'is_active': False}, format='json'
        )

        assert response.status_code == 400
        assert response.json()['error']['code'] == 'SELF_LOCKOUT'

    def test_remove_member(self, company_client, admin_user, member, company, system_roles, grant):
        grant(member, system_roles['viewer'], company)

        response = company_client.as_user(admin_user).delete(f'/v1/users/{member.id}')

        assert response.status_code == 200
        assert response.json()['roles_removed'] == 1
        assert not CompanyMembership.objects.filter(user=member, company=company).exists()

    def test_cannot_remove_self(self, company_client, admin_user):
        response = company_client.as_user(admin_user).delete(f'/v1/users/{admin_user.id}')
        assert response.status_code == 400
        assert response.json()['error']['code'] == 'SELF_LOCKOUT'

    def test_remove_needs_delete_permission(self, company_client, make_user, company, member, system_roles,
                                            grant):
        viewer = make_user('viewer@acme.test', companies=[company])
        grant(viewer, system_roles['viewer'], company)

        response = company_client.as_user(viewer).delete(f'/v1/users/{member.id}')

        assert response.status_code == 403
        assert response.json()['error']['details']['missing'] == ['user:delete']

    def test_role_holders(self, company_client, admin_user, member, other_company, make_user, system_roles,
                          grant, company):
        grant(member, system_roles['viewer'], company)
        outsider = make_user('outsider@globex.test', companies=[other_company])
        grant(outsider, system_roles['viewer'], other_company)

        response = company_client.as_user(admin_user).get(f"/v1/roles/{system_roles['viewer'].id}/users")

        assert response.status_code == 200
        assert [user['email'] for user in response.json()['results']] == [member.email]


@pytest.mark.django_db
class TestMyCompanies:

    def test_list_and_switch(self, api_client, make_user, company, other_company, other_office, system_roles,
                             grant):
        user = make_user('both@example.com', companies=[company, other_company])
        grant(user, system_roles['viewer'], other_company)
        OfficeAccessService.grant(user.id, other_office.id)
        api_client.force_authenticate(user=user)

        listed = api_client.get('/v1/me/companies')
        assert listed.status_code == 200
        assert [item['company']['name'] for item in listed.json()['results']] == ['Acme', 'Globex']
        assert listed.json()['recent'] == []

        switched = api_client.post('/v1/me/switch-company', {'company_id': str(other_company.id)}, format='json')
        assert switched.status_code == 200
        body = switched.json()
        assert body['membership']['company']['id'] == str(other_company.id)
        assert body['current_office_id'] == str(other_office.id)
        assert 'customer:read' in body['permissions']['permissions']

        recent = api_client.get('/v1/me/companies').json()['recent']
        assert [item['company']['id'] for item in recent] == [str(other_company.id)]

    def test_search(self, api_client, make_user, company, other_company):
        user = make_user('both@example.com', companies=[company, other_company])
        api_client.force_authenticate(user=user)

        response = api_client.get('/v1/me/companies', {'search': 'acm'})

        assert [item['company']['name'] for item in response.json()['results']] == ['Acme']

    def test_switch_to_foreign_company(self, api_client, member, other_company):
        api_client.force_authenticate(user=member)

        response = api_client.post('/v1/me/switch-company', {'company_id': str(other_company.id)}, format='json')

        assert response.status_code == 403
        assert response.json()['error']['details']['reason'] == 'not_a_member'


@pytest.fixture
def operator(make_user, system_roles):
    from apps.rbac.services import RoleAssignmentService

    user = make_user('ops@platform.test')
    RoleAssignmentService.assign_platform_role(user.id, system_roles['platformAdmin'].id)
    return user


@pytest.mark.django_db
class TestPlatformEndpoints:

    def test_company_admin_is_not_a_platform_user(self, company_client, admin_user):
        response = company_client.as_user(admin_user).get('/v1/platform/roles')

        assert response.status_code == 403
        assert response.json()['error']['details']['reason'] == 'not_platform_user'

    def test_list_and_create(self, api_client, operator):
        api_client.force_authenticate(user=operator)

        listed = api_client.get('/v1/platform/roles')
        assert listed.status_code == 200
        assert 'platformAdmin' in [role['name'] for role in listed.json()['roles']]

        created = api_client.post('/v1/platform/roles', {
            'name': 'supportAgent',
            'display_name': 'Support Agent',
            'permissions': ['platform:view_companies'],
        }, format='json')
        assert created.status_code == 201
        assert created.json()['type'] == 'platform'

        rejected = api_client.post('/v1/platform/roles', {
            'name': 'companyish',
            'display_name': 'Companyish',
            'permissions': ['customer:read'],
        }, format='json')
        assert rejected.status_code == 400

    def test_grant_clear_and_delete(self, api_client, operator, member):
        api_client.force_authenticate(user=operator)
        created = api_client.post('/v1/platform/roles', {
            'name': 'auditor',
            'display_name': 'Auditor',
            'permissions': ['platform:view_audit_logs'],
        }, format='json').json()

        granted = api_client.put(f'/v1/platform/users/{member.id}/role', {'role_id': created['id']}, format='json')
        assert granted.status_code == 200

        in_use = api_client.delete(f"/v1/platform/roles/{created['id']}")
        assert in_use.status_code == 409

        assert api_client.delete(f'/v1/platform/users/{member.id}/role').status_code == 204
        assert api_client.delete(f"/v1/platform/roles/{created['id']}").status_code == 204

    def test_cannot_clear_own_platform_role(self, api_client, operator):
        api_client.force_authenticate(user=operator)

        response = api_client.delete(f'/v1/platform/users/{operator.id}/role')

        assert response.status_code == 400
        assert response.json()['error']['code'] == 'SELF_LOCKOUT'


class TestRequiresPermissions:

    def test_misspelt_code_fails_at_decoration(self):
        from django.core.exceptions import ImproperlyConfigured

        from apps.core.permissions import requires_permissions

        with pytest.raises(ImproperlyConfigured):
            requires_permissions('role:reed')

    def test_codes_are_stored_per_method(self):
        from apps.core.permissions import requires_permissions
        from rest_framework.views import APIView

        @requires_permissions('role:read', methods=['GET'])
        @requires_permissions('role:*', 'user:delete', methods=['POST'], mode='any')
        class SampleView(APIView):
            def get(self, request):
                pass

            def post(self, request):
                pass

        assert SampleView.required_permissions == {'GET': ('role:read',), 'POST': ('role:*', 'user:delete')}
        assert SampleView.permission_mode == {'GET': 'all', 'POST': 'any'}
