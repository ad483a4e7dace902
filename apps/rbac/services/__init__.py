"""
Services for roles, role assignments, office access, memberships, invites
and authorization.
"""
from .assignment_service import RoleAssignmentService
from .role_service import RoleService
from .office_access_service import OfficeAccessService
from .membership_service import MembershipService
from .invite_service import InviteService
from .authorization import AuthorizationDecision, AuthorizationGuard

__all__ = [
    'RoleAssignmentService',
    'RoleService',
    'OfficeAccessService',
    'MembershipService',
    'InviteService',
    'AuthorizationDecision',
    'AuthorizationGuard',
]
