"""
Company membership lifecycle: listing a user's companies, switching the
active company, activating, deactivating and removing members.
"""
import logging
from typing import Optional

from django.db import transaction
from django.utils import timezone

from apps.companies.models import Company
from apps.core.exceptions import NotFoundError, PermissionDeniedError
from apps.core.logging import SecurityLogger
from apps.rbac.exceptions import SelfLockoutError, UserNotFoundError
from apps.rbac.models import AuditLog, CompanyMembership, User
from apps.rbac.services.assignment_service import RoleAssignmentService
from apps.rbac.services.office_access_service import OfficeAccessService

logger = logging.getLogger(__name__)

RECENT_COMPANIES_LIMIT = 5


class MembershipService:
    """
    Service for CompanyMembership rows.

    Actors can never deactivate or remove themselves.
    """

    @staticmethod
    def _check_not_self(actor, user_id, message):
        if actor is not None and str(actor.id) == str(user_id):
            raise SelfLockoutError(message, user_id)

    @staticmethod
    def _membership(user_id, company_id, lock=False):
        qs = CompanyMembership.objects.filter(
            user_id=user_id, company_id=company_id, user__deleted_at__isnull=True
        )
        if lock:
            qs = qs.select_for_update()
        membership = qs.first()
        if membership is None:
            raise UserNotFoundError(user_id)
        return membership

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @classmethod
    def companies_for(cls, user_id, search=None):
        """Active memberships of the user in active companies, by company name."""
        qs = CompanyMembership.objects.active().filter(
            user_id=user_id, company__is_active=True
        ).select_related('company')
        if search:
            qs = qs.filter(company__name__icontains=search)
        return qs.order_by('company__name')

    @classmethod
    def recent_companies_for(cls, user_id):
        return cls.companies_for(user_id).filter(
            last_accessed_at__isnull=False
        ).order_by('-last_accessed_at')[:RECENT_COMPANIES_LIMIT]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @classmethod
    @transaction.atomic
    def switch_company(cls, user, company_id, request=None) -> CompanyMembership:
        """
        Make a company the user's active one.

        Stamps ``last_accessed_at`` and moves the current office into the
        company: it is kept when already there, otherwise it becomes the
        first allowed office of the company, or null when there is none.

        Raises:
            NotFoundError: company missing or inactive
            PermissionDeniedError: no active membership in the company
        """
        company = Company.objects.active().filter(id=company_id).first()
        if company is None:
            raise NotFoundError(company_id, message='Company not found')

        membership = CompanyMembership.objects.active().select_for_update().filter(
            user_id=user.id, company=company
        ).first()
        if membership is None:
            SecurityLogger.log_permission_denied(
                actor_id=user.id,
                company_id=company.id,
                required=(),
                missing=(),
                reason='not_a_member',
            )
            raise PermissionDeniedError(
                'No active membership for this company',
                {'reason': 'not_a_member', 'company_id': str(company.id)},
            )

        membership.last_accessed_at = timezone.now()
        membership.save(update_fields=['last_accessed_at', 'updated_at'])

        allowed = OfficeAccessService.allowed_offices(user.id, company.id)
        current_id = User.objects.filter(id=user.id).values_list('current_office_id', flat=True).first()
        if not allowed.filter(id=current_id).exists():
            first = allowed.first()
            if first is not None or current_id is not None:
                OfficeAccessService.set_current(
                    user.id, first.id if first else None, changed_by=user, request=request
                )

        logger.info(
            "User switched company",
            extra={'user_id': str(user.id), 'company_id': str(company.id)}
        )
        return membership

    @classmethod
    @transaction.atomic
    def set_active(cls, user_id, company_id, is_active, changed_by: Optional[User] = None,
                   request=None) -> CompanyMembership:
        """
        Activate or deactivate a member. Roles and office grants are kept so
        a reactivated member gets the same access back.

        Raises:
            UserNotFoundError: not a member of the company
            SelfLockoutError: the actor is deactivating themselves
        """
        if not is_active:
            cls._check_not_self(changed_by, user_id, 'Cannot deactivate your own account')

        membership = cls._membership(user_id, company_id, lock=True)
        if membership.is_active == is_active:
            return membership

        membership.is_active = is_active
        membership.save(update_fields=['is_active', 'updated_at'])

        AuditLog.log_action(
            action='member_activated' if is_active else 'member_deactivated',
            user=changed_by,
            company_id=company_id,
            target_type='User',
            target_id=user_id,
            request=request,
        )
        logger.info(
            "Member activated" if is_active else "Member deactivated",
            extra={'user_id': str(user_id), 'company_id': str(company_id)}
        )
        return membership

    @classmethod
    def strip_company_access(cls, user_id, company_id, revoked_by: Optional[User] = None) -> dict:
        """
        Drop every role and office grant the user holds in one company.

        Must run inside the caller's transaction.
        """
        return {
            'roles_removed': RoleAssignmentService.revoke_all(user_id, company_id, revoked_by=revoked_by),
            'offices_removed': OfficeAccessService.revoke_company(user_id, company_id, revoked_by=revoked_by),
        }

    @classmethod
    @transaction.atomic
    def remove(cls, user_id, company_id, removed_by: Optional[User] = None, request=None) -> dict:
        """
        Remove a member from the company with all of their roles and office
        grants. The identity itself survives for its other companies.

        Raises:
            UserNotFoundError: not a member of the company
            SelfLockoutError: the actor is removing themselves
        """
        cls._check_not_self(removed_by, user_id, 'Cannot delete your own account')

        membership = cls._membership(user_id, company_id, lock=True)
        result = cls.strip_company_access(user_id, company_id, revoked_by=removed_by)
        membership.delete()

        AuditLog.log_action(
            action='member_removed',
            user=removed_by,
            company_id=company_id,
            target_type='User',
            target_id=user_id,
            metadata=result,
            request=request,
        )
        logger.info(
            "Member removed",
            extra={'user_id': str(user_id), 'company_id': str(company_id), **result}
        )
        return result

    @classmethod
    def detach_other_companies(cls, user_id, keep_company_id) -> int:
        """
        Deactivate the user's memberships everywhere except one company and
        drop the roles and office grants they held there. Used when a
        soft-deleted identity is restored, so old grants stay gone.

        Must run inside the caller's transaction.
        """
        stale = list(
            CompanyMembership.objects.filter(user_id=user_id)
            .exclude(company_id=keep_company_id)
            .select_for_update()
        )
        for membership in stale:
            cls.strip_company_access(user_id, membership.company_id)
            if membership.is_active:
                membership.is_active = False
                membership.save(update_fields=['is_active', 'updated_at'])
        return len(stale)
