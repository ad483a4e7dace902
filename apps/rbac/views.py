"""
RBAC REST API views.

Implements endpoints for:
- Permission catalog and the caller's advisory permission snapshot
- Role management (CRUD, clone)
- Role assignments (assign, revoke, bulk)
- Office access per user
- Members (activate, deactivate, remove) and the caller's companies
- Invites (admin side and the public accept flow)
- Platform roles, guarded by the caller's platform role

Every company-scoped view reads the company from the X-COMPANY-ID header
once and passes it explicitly to the services.
"""
from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.middleware import get_request_company_id
from apps.core.permissions import HasCompanyPermission, HasPlatformPermission, requires_permissions
from apps.companies.models import Office
from apps.rbac import permissions as perms
from apps.rbac.exceptions import OfficeNotFoundError, UserNotFoundError
from apps.rbac.models import CompanyMembership, User
from apps.rbac.serializers import (
    BulkRoleAssignmentSerializer,
    CurrentOfficeSerializer,
    InviteAcceptSerializer,
    InviteCreateSerializer,
    InvitePreviewSerializer,
    InviteResendSerializer,
    InviteSerializer,
    MembershipSerializer,
    MemberStatusSerializer,
    OfficeGrantSerializer,
    OfficeSerializer,
    PermissionMetaSerializer,
    PermissionSnapshotSerializer,
    PlatformRoleCreateSerializer,
    PlatformRoleGrantSerializer,
    PlatformRoleSerializer,
    PlatformRoleUpdateSerializer,
    RoleAssignmentRequestSerializer,
    RoleCloneSerializer,
    RoleCreateSerializer,
    RoleSerializer,
    RoleUpdateSerializer,
    SwitchCompanySerializer,
    UserSummarySerializer,
)
from apps.rbac.services import (
    AuthorizationGuard,
    InviteService,
    MembershipService,
    OfficeAccessService,
    RoleAssignmentService,
    RoleService,
)


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 20
    page_size_query_param = 'page_size'
    max_page_size = 100


def _member_or_404(user_id, company_id):
    if not CompanyMembership.objects.is_member(user_id, company_id):
        raise UserNotFoundError(user_id)


def _company_office_or_404(office_id, company_id):
    office = Office.objects.for_company(company_id).filter(id=office_id).first()
    if office is None:
        raise OfficeNotFoundError(office_id)
    return office


COMPANY_HEADER_PARAMETER = OpenApiParameter(
    name='X-COMPANY-ID',
    type=OpenApiTypes.UUID,
    location=OpenApiParameter.HEADER,
    required=True,
    description='Company the request acts within',
)


# ===== PERMISSIONS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List permission catalog',
        description='All known permissions grouped by category.',
        responses={200: OpenApiTypes.OBJECT},
    )
)
class PermissionListView(APIView):
    """
    GET /v1/permissions

    The static permission catalog. Any authenticated user may read it.
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        categories = [
            {
                'category': category,
                'permissions': PermissionMetaSerializer(entries, many=True).data,
            }
            for category, entries in perms.by_category().items()
        ]
        return Response({'count': len(perms.all_codes()), 'categories': categories})


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary="Caller's effective permissions",
        description='''
Effective permissions of the caller in the company named by X-COMPANY-ID.

The result is **advisory**: use it to show or hide UI affordances. Every
mutating endpoint checks permissions again on the server.
        ''',
        parameters=[COMPANY_HEADER_PARAMETER],
        responses={200: PermissionSnapshotSerializer},
    )
)
class MyPermissionsView(APIView):
    """GET /v1/me/permissions"""

    permission_classes = [HasCompanyPermission]

    def get(self, request):
        snapshot = AuthorizationGuard.permission_snapshot(request.user.id, get_request_company_id(request))
        return Response(PermissionSnapshotSerializer(snapshot).data)


# ===== MEMBERSHIPS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Memberships'],
        summary="Caller's companies",
        description='Active memberships of the caller, by company name, plus the most recently switched-to ones.',
        parameters=[
            OpenApiParameter(name='search', type=OpenApiTypes.STR, location=OpenApiParameter.QUERY),
        ],
        responses={200: MembershipSerializer(many=True)},
    )
)
class MyCompaniesView(APIView):
    """GET /v1/me/companies"""

    permission_classes = [IsAuthenticated]
    pagination_class = StandardResultsSetPagination

    def get(self, request):
        memberships = MembershipService.companies_for(request.user.id, search=request.query_params.get('search'))

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(memberships, request, view=self)
        response = paginator.get_paginated_response(MembershipSerializer(page, many=True).data)
        response.data['recent'] = MembershipSerializer(
            MembershipService.recent_companies_for(request.user.id), many=True
        ).data
        return response


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Memberships'],
        summary='Switch company',
        description='''
Make a company the caller's active one. The caller's current office moves
into that company. Returns the membership and the caller's advisory
permissions there.
        ''',
        request=SwitchCompanySerializer,
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
)
class SwitchCompanyView(APIView):
    """POST /v1/me/switch-company"""

    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = SwitchCompanySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        company_id = serializer.validated_data['company_id']

        membership = MembershipService.switch_company(request.user, company_id, request=request)
        snapshot = AuthorizationGuard.permission_snapshot(request.user.id, company_id)
        current_id = User.objects.filter(id=request.user.id).values_list('current_office_id', flat=True).first()
        return Response({
            'membership': MembershipSerializer(membership).data,
            'current_office_id': str(current_id) if current_id else None,
            'permissions': PermissionSnapshotSerializer(snapshot).data,
        })


# ===== ROLES =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List roles',
        description='System roles plus the company\'s own roles, with assignment counts.',
        parameters=[COMPANY_HEADER_PARAMETER],
        responses={200: RoleSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Create company role',
        parameters=[COMPANY_HEADER_PARAMETER],
        request=RoleCreateSerializer,
        responses={201: RoleSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
)
@requires_permissions('role:read', methods=['GET'])
@requires_permissions('role:create', methods=['POST'])
class RoleListView(APIView):
    """
    GET /v1/roles
    POST /v1/roles
    """

    permission_classes = [HasCompanyPermission]

    def get(self, request):
        company_id = get_request_company_id(request)
        roles = RoleService.list_for_company(company_id)

        role_type = request.query_params.get('type')
        if role_type:
            roles = roles.filter(type=role_type)

        serializer = RoleSerializer(roles, many=True)
        return Response({'count': len(serializer.data), 'roles': serializer.data})

    def post(self, request):
        serializer = RoleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        role = RoleService.create(
            company_id=get_request_company_id(request),
            created_by=request.user,
            request=request,
            **serializer.validated_data,
        )
        return Response(RoleSerializer(role).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='Get role',
        parameters=[COMPANY_HEADER_PARAMETER],
        responses={200: RoleSerializer, 404: OpenApiTypes.OBJECT},
    ),
    patch=extend_schema(
        tags=['RBAC - Roles'],
        summary='Update company role',
        description='Display name, description, permissions and default flag can change. The name cannot.',
        parameters=[COMPANY_HEADER_PARAMETER],
        request=RoleUpdateSerializer,
        responses={200: RoleSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['RBAC - Roles'],
        summary='Delete company role',
        description='Fails with 409 while the role has assignments unless `force=true`.',
        parameters=[
            COMPANY_HEADER_PARAMETER,
            OpenApiParameter(name='force', type=OpenApiTypes.BOOL, location=OpenApiParameter.QUERY),
        ],
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    ),
)
@requires_permissions('role:read', methods=['GET'])
@requires_permissions('role:update', methods=['PATCH'])
@requires_permissions('role:delete', methods=['DELETE'])
class RoleDetailView(APIView):
    """
    GET /v1/roles/{id}
    PATCH /v1/roles/{id}
    DELETE /v1/roles/{id}?force=true
    """

    permission_classes = [HasCompanyPermission]

    def get(self, request, role_id):
        role = RoleService.get_visible(role_id, get_request_company_id(request))
        return Response(RoleSerializer(role).data)

    def patch(self, request, role_id):
        serializer = RoleUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        role = RoleService.update(
            role_id,
            get_request_company_id(request),
            dict(serializer.validated_data),
            updated_by=request.user,
            request=request,
        )
        return Response(RoleSerializer(role).data)

    def delete(self, request, role_id):
        force = request.query_params.get('force', '').lower() in ('1', 'true', 'yes')
        result = RoleService.delete(
            role_id,
            get_request_company_id(request),
            force=force,
            deleted_by=request.user,
            request=request,
        )
        return Response(result)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Clone role',
        description='Copy a system or company role into a new company role. The source is untouched.',
        parameters=[COMPANY_HEADER_PARAMETER],
        request=RoleCloneSerializer,
        responses={201: RoleSerializer, 404: OpenApiTypes.OBJECT},
    )
)
@requires_permissions('role:create', methods=['POST'])
class RoleCloneView(APIView):
    """POST /v1/roles/{id}/clone"""

    permission_classes = [HasCompanyPermission]

    def post(self, request, role_id):
        serializer = RoleCloneSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        role = RoleService.clone(
            role_id,
            get_request_company_id(request),
            created_by=request.user,
            request=request,
            **serializer.validated_data,
        )
        return Response(RoleSerializer(role).data, status=status.HTTP_201_CREATED)


# ===== ASSIGNMENTS =====

@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Assignments'],
        summary='Assign role to user',
        description='Idempotent. Returns 201 when the assignment is new, 200 when it already existed.',
        parameters=[COMPANY_HEADER_PARAMETER],
        request=RoleAssignmentRequestSerializer,
        responses={200: OpenApiTypes.OBJECT, 201: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    )
)
@requires_permissions('role:assign', methods=['POST'])
class RoleAssignView(APIView):
    """POST /v1/roles/assign"""

    permission_classes = [HasCompanyPermission]

    def post(self, request):
        serializer = RoleAssignmentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        assignment, created = RoleAssignmentService.assign(
            serializer.validated_data['user_id'],
            serializer.validated_data['role_id'],
            get_request_company_id(request),
            assigned_by=request.user,
            request=request,
        )
        return Response(
            {
                'id': str(assignment.id),
                'user_id': str(assignment.user_id),
                'role_id': str(assignment.role_id),
                'created': created,
            },
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Assignments'],
        summary='Revoke role from user',
        description='Revoking an assignment that does not exist is a no-op.',
        parameters=[COMPANY_HEADER_PARAMETER],
        request=RoleAssignmentRequestSerializer,
        responses={200: OpenApiTypes.OBJECT},
    )
)
@requires_permissions('role:assign', methods=['POST'])
class RoleRevokeView(APIView):
    """POST /v1/roles/revoke"""

    permission_classes = [HasCompanyPermission]

    def post(self, request):
        serializer = RoleAssignmentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        removed = RoleAssignmentService.revoke(
            serializer.validated_data['user_id'],
            serializer.validated_data['role_id'],
            get_request_company_id(request),
            revoked_by=request.user,
            request=request,
        )
        return Response({'removed': removed})


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Assignments'],
        summary='Assign roles in bulk',
        description='Each item succeeds or fails on its own; the response lists a result per item.',
        parameters=[COMPANY_HEADER_PARAMETER],
        request=BulkRoleAssignmentSerializer,
        responses={200: OpenApiTypes.OBJECT},
    )
)
@requires_permissions('role:assign', methods=['POST'])
class BulkRoleAssignView(APIView):
    """POST /v1/roles/assign/bulk"""

    permission_classes = [HasCompanyPermission]

    def post(self, request):
        serializer = BulkRoleAssignmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        results = RoleAssignmentService.bulk_assign(
            serializer.validated_data['assignments'],
            get_request_company_id(request),
            assigned_by=request.user,
            request=request,
        )
        return Response({
            'results': results,
            'succeeded': sum(1 for result in results if result['success']),
            'failed': sum(1 for result in results if not result['success']),
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Assignments'],
        summary="List a user's roles",
        parameters=[COMPANY_HEADER_PARAMETER],
        responses={200: RoleSerializer(many=True), 404: OpenApiTypes.OBJECT},
    )
)
@requires_permissions('role:read', methods=['GET'])
class UserRolesView(APIView):
    """GET /v1/users/{id}/roles"""

    permission_classes = [HasCompanyPermission]

    def get(self, request, user_id):
        company_id = get_request_company_id(request)
        _member_or_404(user_id, company_id)

        roles = RoleAssignmentService.roles_for(user_id, company_id).order_by('name')
        return Response({
            'user_id': str(user_id),
            'roles': RoleSerializer(roles, many=True).data,
            'permissions': sorted(RoleAssignmentService.effective_permissions(user_id, company_id)),
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Assignments'],
        summary='List holders of a role',
        parameters=[COMPANY_HEADER_PARAMETER],
        responses={200: UserSummarySerializer(many=True), 404: OpenApiTypes.OBJECT},
    )
)
@requires_permissions('role:read', methods=['GET'])
class RoleUsersView(APIView):
    """GET /v1/roles/{id}/users"""

    permission_classes = [HasCompanyPermission]
    pagination_class = StandardResultsSetPagination

    def get(self, request, role_id):
        company_id = get_request_company_id(request)
        role = RoleService.get_visible(role_id, company_id)
        users = RoleAssignmentService.users_with_role(role.id, company_id).order_by('email')

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(users, request, view=self)
        return paginator.get_paginated_response(UserSummarySerializer(page, many=True).data)


# ===== MEMBERS =====

@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Members'],
        summary='Remove a user from the company',
        description='Drops the membership with every role and office grant. You cannot remove yourself.',
        parameters=[COMPANY_HEADER_PARAMETER],
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
)
@requires_permissions('user:delete', methods=['DELETE'])
class MemberDetailView(APIView):
    """DELETE /v1/users/{id}"""

    permission_classes = [HasCompanyPermission]

    def delete(self, request, user_id):
        result = MembershipService.remove(
            user_id,
            get_request_company_id(request),
            removed_by=request.user,
            request=request,
        )
        return Response({'user_id': str(user_id), **result})


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Members'],
        summary='Activate or deactivate a member',
        description='Roles and office grants are kept while inactive. You cannot deactivate yourself.',
        parameters=[COMPANY_HEADER_PARAMETER],
        request=MemberStatusSerializer,
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
)
@requires_permissions('user:activate', methods=['POST'])
class MemberActivationView(APIView):
    """POST /v1/users/{id}/activate"""

    permission_classes = [HasCompanyPermission]

    def post(self, request, user_id):
        serializer = MemberStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        membership = MembershipService.set_active(
            user_id,
            get_request_company_id(request),
            serializer.validated_data['is_active'],
            changed_by=request.user,
            request=request,
        )
        return Response({'user_id': str(user_id), 'is_active': membership.is_active})


# ===== OFFICE ACCESS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Office Access'],
        summary="List a user's allowed offices",
        parameters=[COMPANY_HEADER_PARAMETER],
        responses={200: OfficeSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Office Access'],
        summary='Grant office access',
        parameters=[COMPANY_HEADER_PARAMETER],
        request=OfficeGrantSerializer,
        responses={200: OfficeSerializer, 201: OfficeSerializer, 400: OpenApiTypes.OBJECT},
    ),
)
@requires_permissions('user:read', methods=['GET'])
@requires_permissions('user:update', methods=['POST'])
class UserOfficeListView(APIView):
    """
    GET /v1/users/{id}/offices
    POST /v1/users/{id}/offices
    """

    permission_classes = [HasCompanyPermission]

    def get(self, request, user_id):
        company_id = get_request_company_id(request)
        _member_or_404(user_id, company_id)

        offices = OfficeAccessService.allowed_offices(user_id, company_id)
        current_id = User.objects.filter(id=user_id).values_list('current_office_id', flat=True).first()
        # Offices of other companies never show through this company's header.
        if current_id is not None and not Office.objects.for_company(company_id).filter(id=current_id).exists():
            current_id = None
        return Response({
            'user_id': str(user_id),
            'current_office_id': str(current_id) if current_id else None,
            'offices': OfficeSerializer(offices, many=True).data,
        })

    def post(self, request, user_id):
        serializer = OfficeGrantSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        company_id = get_request_company_id(request)
        _member_or_404(user_id, company_id)
        office = _company_office_or_404(serializer.validated_data['office_id'], company_id)

        _, created = OfficeAccessService.grant(user_id, office.id, assigned_by=request.user, request=request)
        return Response(
            OfficeSerializer(office).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Office Access'],
        summary='Revoke office access',
        description='Clears the user\'s current office when it pointed at the revoked office.',
        parameters=[COMPANY_HEADER_PARAMETER],
        responses={204: None, 404: OpenApiTypes.OBJECT},
    )
)
@requires_permissions('user:update', methods=['DELETE'])
class UserOfficeDetailView(APIView):
    """DELETE /v1/users/{id}/offices/{office_id}"""

    permission_classes = [HasCompanyPermission]

    def delete(self, request, user_id, office_id):
        company_id = get_request_company_id(request)
        _member_or_404(user_id, company_id)
        _company_office_or_404(office_id, company_id)

        OfficeAccessService.revoke(user_id, office_id, revoked_by=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    put=extend_schema(
        tags=['RBAC - Office Access'],
        summary='Set current office',
        description='The office must be one of the user\'s allowed offices. `null` clears it.',
        parameters=[COMPANY_HEADER_PARAMETER],
        request=CurrentOfficeSerializer,
        responses={200: UserSummarySerializer, 400: OpenApiTypes.OBJECT},
    )
)
@requires_permissions('user:update', methods=['PUT'])
class UserCurrentOfficeView(APIView):
    """PUT /v1/users/{id}/current-office"""

    permission_classes = [HasCompanyPermission]

    def put(self, request, user_id):
        serializer = CurrentOfficeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        company_id = get_request_company_id(request)
        _member_or_404(user_id, company_id)
        office_id = serializer.validated_data['office_id']
        if office_id is not None:
            _company_office_or_404(office_id, company_id)

        user = OfficeAccessService.set_current(user_id, office_id, changed_by=request.user, request=request)
        return Response(UserSummarySerializer(user).data)


# ===== INVITES =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Invites'],
        summary='List pending invites',
        parameters=[COMPANY_HEADER_PARAMETER],
        responses={200: InviteSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Invites'],
        summary='Invite a user',
        description='''
Create a pending invite and email the invitee a one-time link.

Returns 409 when a pending invite for the email already exists or when the
company has no seats left.
        ''',
        parameters=[COMPANY_HEADER_PARAMETER],
        request=InviteCreateSerializer,
        responses={201: InviteSerializer, 400: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    ),
)
@requires_permissions('user:read', methods=['GET'])
@requires_permissions('user:create', methods=['POST'])
class InviteListView(APIView):
    """
    GET /v1/invites
    POST /v1/invites
    """

    permission_classes = [HasCompanyPermission]
    pagination_class = StandardResultsSetPagination

    def get(self, request):
        invites = InviteService.list_pending(get_request_company_id(request))

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(invites, request, view=self)
        serializer = InviteSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def post(self, request):
        serializer = InviteCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        invite, _ = InviteService.create(
            company_id=get_request_company_id(request),
            email=data['email'],
            role_ids=data['roles'],
            allowed_office_ids=data['allowed_office_ids'],
            current_office_id=data['current_office_id'],
            invited_by=request.user,
            request=request,
        )
        return Response(InviteSerializer(invite).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Invites'],
        summary='Revoke invite',
        parameters=[COMPANY_HEADER_PARAMETER],
        responses={200: InviteSerializer, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    )
)
@requires_permissions('user:create', methods=['DELETE'])
class InviteDetailView(APIView):
    """DELETE /v1/invites/{id}"""

    permission_classes = [HasCompanyPermission]

    def delete(self, request, invite_id):
        invite = InviteService.revoke(
            invite_id,
            get_request_company_id(request),
            revoked_by=request.user,
            request=request,
        )
        return Response(InviteSerializer(invite).data)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Invites'],
        summary='Update and resend invite',
        description='Issues a new token and expiry. The previous link stops working.',
        parameters=[COMPANY_HEADER_PARAMETER],
        request=InviteResendSerializer,
        responses={200: InviteSerializer, 409: OpenApiTypes.OBJECT},
    )
)
@requires_permissions('user:create', methods=['POST'])
class InviteResendView(APIView):
    """POST /v1/invites/{id}/resend"""

    permission_classes = [HasCompanyPermission]

    def post(self, request, invite_id):
        serializer = InviteResendSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        kwargs = {
            'role_ids': data.get('roles'),
            'allowed_office_ids': data.get('allowed_office_ids'),
        }
        if 'current_office_id' in data:
            kwargs['current_office_id'] = data['current_office_id']

        invite, _ = InviteService.update_and_resend(
            invite_id,
            get_request_company_id(request),
            resent_by=request.user,
            request=request,
            **kwargs,
        )
        return Response(InviteSerializer(invite).data)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Invites'],
        summary='Validate invite token',
        description='Public. Shows who the invite is for before the invitee accepts it.',
        parameters=[OpenApiParameter(name='token', type=OpenApiTypes.STR, location=OpenApiParameter.QUERY)],
        responses={200: InvitePreviewSerializer, 404: OpenApiTypes.OBJECT, 410: OpenApiTypes.OBJECT},
    )
)
@method_decorator(ratelimit(key='ip', rate='30/m', method='GET', block=True), name='get')
class InviteValidateView(APIView):
    """GET /v1/invites/validate?token="""

    authentication_classes = []
    permission_classes = [AllowAny]

    def get(self, request):
        invite = InviteService.validate_token(request.query_params.get('token', ''))
        return Response(InvitePreviewSerializer(invite).data)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Invites'],
        summary='Accept invite',
        description='''
Public. Accepting creates the account when the email is new (a password of
at least 8 characters is then required), joins the company, assigns the
invited and default roles, and grants the invited offices.
        ''',
        request=InviteAcceptSerializer,
        responses={200: UserSummarySerializer, 400: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT,
                   410: OpenApiTypes.OBJECT},
    )
)
@method_decorator(ratelimit(key='ip', rate='10/m', method='POST', block=True), name='post')
class InviteAcceptView(APIView):
    """POST /v1/invites/accept"""

    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        serializer = InviteAcceptSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        user = InviteService.accept(
            data['token'],
            password=data.get('password') or None,
            first_name=data.get('first_name') or None,
            last_name=data.get('last_name') or None,
            request=request,
        )
        return Response(UserSummarySerializer(user).data)


# ===== PLATFORM =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Platform'],
        summary='List platform roles',
        responses={200: PlatformRoleSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Platform'],
        summary='Create platform role',
        description='At least one `platform:*` permission is required.',
        request=PlatformRoleCreateSerializer,
        responses={201: PlatformRoleSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
)
@requires_permissions('platform:admin')
class PlatformRoleListView(APIView):
    """
    GET /v1/platform/roles
    POST /v1/platform/roles
    """

    permission_classes = [HasPlatformPermission]

    def get(self, request):
        serializer = PlatformRoleSerializer(RoleService.list_platform_roles(), many=True)
        return Response({'count': len(serializer.data), 'roles': serializer.data})

    def post(self, request):
        serializer = PlatformRoleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        role = RoleService.create_platform_role(
            created_by=request.user,
            request=request,
            **serializer.validated_data,
        )
        return Response(PlatformRoleSerializer(role).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    patch=extend_schema(
        tags=['RBAC - Platform'],
        summary='Update platform role',
        request=PlatformRoleUpdateSerializer,
        responses={200: PlatformRoleSerializer, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['RBAC - Platform'],
        summary='Delete platform role',
        description='Fails with 409 while any user holds the role.',
        responses={204: None, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    ),
)
@requires_permissions('platform:admin')
class PlatformRoleDetailView(APIView):
    """
    PATCH /v1/platform/roles/{id}
    DELETE /v1/platform/roles/{id}
    """

    permission_classes = [HasPlatformPermission]

    def patch(self, request, role_id):
        serializer = PlatformRoleUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        role = RoleService.update_platform_role(
            role_id,
            dict(serializer.validated_data),
            updated_by=request.user,
            request=request,
        )
        return Response(PlatformRoleSerializer(role).data)

    def delete(self, request, role_id):
        RoleService.delete_platform_role(role_id, deleted_by=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    put=extend_schema(
        tags=['RBAC - Platform'],
        summary="Set a user's platform role",
        request=PlatformRoleGrantSerializer,
        responses={200: UserSummarySerializer, 404: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['RBAC - Platform'],
        summary="Clear a user's platform role",
        description='Operators cannot clear their own platform role.',
        responses={204: None, 400: OpenApiTypes.OBJECT},
    ),
)
@requires_permissions('platform:admin')
class PlatformUserRoleView(APIView):
    """
    PUT /v1/platform/users/{id}/role
    DELETE /v1/platform/users/{id}/role
    """

    permission_classes = [HasPlatformPermission]

    def put(self, request, user_id):
        serializer = PlatformRoleGrantSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = RoleAssignmentService.assign_platform_role(
            user_id,
            serializer.validated_data['role_id'],
            assigned_by=request.user,
            request=request,
        )
        return Response(UserSummarySerializer(user).data)

    def delete(self, request, user_id):
        RoleAssignmentService.clear_platform_role(user_id, cleared_by=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)
