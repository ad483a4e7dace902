"""
Authorization guard: the single entry point for "may this actor do X in
company Y (and office Z)".
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple, Union

from apps.companies.models import Office
from apps.core.exceptions import PermissionDeniedError, ValidationError
from apps.core.logging import SecurityLogger
from apps.rbac import permissions as perms
from apps.rbac.models import CompanyMembership
from apps.rbac.services.assignment_service import RoleAssignmentService
from apps.rbac.services.office_access_service import OfficeAccessService

logger = logging.getLogger(__name__)

MODE_ALL = 'all'
MODE_ANY = 'any'
MODES = (MODE_ALL, MODE_ANY)

DENY_NOT_A_MEMBER = 'not_a_member'
DENY_MISSING_PERMISSIONS = 'missing_permissions'
DENY_OFFICE_NOT_ALLOWED = 'office_not_allowed'
DENY_NO_COMPANY = 'no_company'
DENY_NOT_PLATFORM_USER = 'not_platform_user'


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of one authorization check."""
    allowed: bool
    mode: str
    required: Tuple[str, ...]
    missing: Tuple[str, ...] = field(default_factory=tuple)
    reason: Optional[str] = None

    def __bool__(self):
        return self.allowed


def _as_tuple(required: Union[str, Iterable[str]]) -> Tuple[str, ...]:
    if isinstance(required, str):
        required = (required,)
    return tuple(perms.parse_permission(code) for code in required)


class AuthorizationGuard:
    """
    Composes the role assignment graph and the permission matcher.

    The company id is always an explicit argument supplied by the caller's
    session; the guard never looks it up from the actor.
    """

    @classmethod
    def _decide(cls, required, held, mode) -> AuthorizationDecision:
        if mode not in MODES:
            raise ValidationError(f"Unknown authorization mode: {mode!r}", field='mode')

        if mode == MODE_ALL:
            allowed = perms.holds_all(required, held)
        else:
            allowed = perms.holds_any(required, held)

        return AuthorizationDecision(
            allowed=allowed,
            mode=mode,
            required=required,
            missing=() if allowed else tuple(perms.missing_permissions(required, held)),
            reason=None if allowed else DENY_MISSING_PERMISSIONS,
        )

    @staticmethod
    def _deny(actor_id, company_id, decision, ip_address):
        SecurityLogger.log_permission_denied(
            actor_id=actor_id,
            company_id=company_id,
            required=decision.required,
            missing=decision.missing,
            reason=decision.reason,
            ip_address=ip_address,
        )
        raise PermissionDeniedError(
            'You do not have permission to perform this action',
            {
                'reason': decision.reason,
                'mode': decision.mode,
                'required': list(decision.required),
                'missing': list(decision.missing),
            },
        )

    @classmethod
    def authorize(cls, actor_id, company_id, required, mode=MODE_ALL, office_id=None) -> AuthorizationDecision:
        """
        Decide whether the actor holds the required permission(s) in the company.

        ``mode='all'`` needs every permission (an empty list passes);
        ``mode='any'`` needs at least one (an empty list never passes).
        With ``office_id`` the office must also belong to the company and
        be one of the actor's allowed offices.
        """
        required = _as_tuple(required)

        if actor_id is None or company_id is None:
            return AuthorizationDecision(False, mode, required, required, DENY_NO_COMPANY)

        if not CompanyMembership.objects.is_member(actor_id, company_id):
            return AuthorizationDecision(False, mode, required, required, DENY_NOT_A_MEMBER)

        held = RoleAssignmentService.effective_permissions(actor_id, company_id)
        decision = cls._decide(required, held, mode)

        if decision.allowed and office_id is not None:
            in_company = Office.objects.filter(id=office_id, company_id=company_id).exists()
            if not in_company or not OfficeAccessService.has_access(actor_id, office_id):
                return AuthorizationDecision(False, mode, required, (), DENY_OFFICE_NOT_ALLOWED)

        return decision

    @classmethod
    def require(cls, actor_id, company_id, required, mode=MODE_ALL, office_id=None,
                ip_address=None) -> AuthorizationDecision:
        """
        Same as ``authorize`` but raises on denial.

        Raises:
            PermissionDeniedError: with the missing permissions and reason
        """
        decision = cls.authorize(actor_id, company_id, required, mode=mode, office_id=office_id)
        if not decision.allowed:
            cls._deny(actor_id, company_id, decision, ip_address)
        return decision

    @classmethod
    def authorize_platform(cls, actor_id, required, mode=MODE_ALL) -> AuthorizationDecision:
        """
        Check platform-operator permissions; company roles never count here.

        Actors without a platform role are denied even when nothing is required.
        """
        required = _as_tuple(required)
        held = RoleAssignmentService.platform_permissions(actor_id) if actor_id else frozenset()
        if not held:
            return AuthorizationDecision(False, mode, required, required, DENY_NOT_PLATFORM_USER)
        return cls._decide(required, held, mode)

    @classmethod
    def require_platform(cls, actor_id, required, mode=MODE_ALL, ip_address=None) -> AuthorizationDecision:
        """
        Same as ``authorize_platform`` but raises on denial.

        Raises:
            PermissionDeniedError
        """
        decision = cls.authorize_platform(actor_id, required, mode=mode)
        if not decision.allowed:
            cls._deny(actor_id, None, decision, ip_address)
        return decision

    @classmethod
    def permission_snapshot(cls, actor_id, company_id) -> dict:
        """
        Effective permissions for UI affordances.

        Advisory only: every mutating endpoint re-runs ``require`` itself.
        """
        if not CompanyMembership.objects.is_member(actor_id, company_id):
            held = frozenset()
        else:
            held = RoleAssignmentService.effective_permissions(actor_id, company_id)
        return {
            'company_id': str(company_id),
            'permissions': sorted(held),
            'advisory': True,
        }
