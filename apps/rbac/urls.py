"""
RBAC API URLs.

Provides endpoints for:
- Permission catalog and the caller's permission snapshot
- Role management (CRUD, clone) and role assignments
- Office access per user
- Member activation and removal, the caller's companies and company switching
- Invites and the public accept flow
- Platform roles and platform role grants
"""
from django.urls import path

from apps.rbac.views import (
    BulkRoleAssignView,
    InviteAcceptView,
    InviteDetailView,
    InviteListView,
    InviteResendView,
    InviteValidateView,
    MemberActivationView,
    MemberDetailView,
    MyCompaniesView,
    MyPermissionsView,
    PermissionListView,
    PlatformRoleDetailView,
    PlatformRoleListView,
    PlatformUserRoleView,
    RoleAssignView,
    RoleCloneView,
    RoleDetailView,
    RoleListView,
    RoleRevokeView,
    RoleUsersView,
    SwitchCompanyView,
    UserCurrentOfficeView,
    UserOfficeDetailView,
    UserOfficeListView,
    UserRolesView,
)

app_name = 'rbac'

urlpatterns = [
    # Permission endpoints
    path('permissions', PermissionListView.as_view(), name='permission-list'),
    path('me/permissions', MyPermissionsView.as_view(), name='my-permissions'),
    path('me/companies', MyCompaniesView.as_view(), name='my-companies'),
    path('me/switch-company', SwitchCompanyView.as_view(), name='switch-company'),

    # Role endpoints
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/assign', RoleAssignView.as_view(), name='role-assign'),
    path('roles/assign/bulk', BulkRoleAssignView.as_view(), name='role-assign-bulk'),
    path('roles/revoke', RoleRevokeView.as_view(), name='role-revoke'),
    path('roles/<uuid:role_id>', RoleDetailView.as_view(), name='role-detail'),
    path('roles/<uuid:role_id>/clone', RoleCloneView.as_view(), name='role-clone'),
    path('roles/<uuid:role_id>/users', RoleUsersView.as_view(), name='role-users'),

    # User endpoints
    path('users/<uuid:user_id>', MemberDetailView.as_view(), name='member-detail'),
    path('users/<uuid:user_id>/activate', MemberActivationView.as_view(), name='member-activate'),
    path('users/<uuid:user_id>/roles', UserRolesView.as_view(), name='user-roles'),
    path('users/<uuid:user_id>/offices', UserOfficeListView.as_view(), name='user-offices'),
    path('users/<uuid:user_id>/offices/<uuid:office_id>', UserOfficeDetailView.as_view(),
         name='user-office-detail'),
    path('users/<uuid:user_id>/current-office', UserCurrentOfficeView.as_view(), name='user-current-office'),

    # Invite endpoints
    path('invites', InviteListView.as_view(), name='invite-list'),
    path('invites/validate', InviteValidateView.as_view(), name='invite-validate'),
    path('invites/accept', InviteAcceptView.as_view(), name='invite-accept'),
    path('invites/<uuid:invite_id>', InviteDetailView.as_view(), name='invite-detail'),
    path('invites/<uuid:invite_id>/resend', InviteResendView.as_view(), name='invite-resend'),

    # Platform endpoints
    path('platform/roles', PlatformRoleListView.as_view(), name='platform-role-list'),
    path('platform/roles/<uuid:role_id>', PlatformRoleDetailView.as_view(), name='platform-role-detail'),
    path('platform/users/<uuid:user_id>/role', PlatformUserRoleView.as_view(), name='platform-user-role'),
]
