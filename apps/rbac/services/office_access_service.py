"""
Office access model: each user's allowed offices and current office.
"""
import logging
from typing import Optional

from django.db import transaction

from apps.companies.models import Office
from apps.rbac.exceptions import (
    OfficeNotAllowedError,
    OfficeNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from apps.rbac.models import AuditLog, CompanyMembership, OfficeAccess, User

logger = logging.getLogger(__name__)


class OfficeAccessService:
    """
    Service for office grants.

    Invariant: ``user.current_office`` is null or one of the offices in the
    user's OfficeAccess set. Every operation that can break it locks the
    user row and fixes the pointer in the same transaction.
    """

    @staticmethod
    def _lock_user(user_id) -> User:
        user = User.objects.select_for_update().filter(id=user_id).first()
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    @classmethod
    def allowed_offices(cls, user_id, company_id=None):
        qs = Office.objects.filter(access_grants__user_id=user_id)
        if company_id is not None:
            qs = qs.filter(company_id=company_id)
        return qs.order_by('name')

    @classmethod
    def has_access(cls, user_id, office_id) -> bool:
        return OfficeAccess.objects.filter(user_id=user_id, office_id=office_id).exists()

    @classmethod
    def grant(cls, user_id, office_id, assigned_by: Optional[User] = None, request=None):
        """
        Add an office to the user's allowed set. Idempotent.

        Returns:
            (OfficeAccess, created) tuple

        Raises:
            UserNotFoundError, OfficeNotFoundError
            ValidationError: user is not a member of the office's company
        """
        office = Office.objects.filter(id=office_id).first()
        if office is None:
            raise OfficeNotFoundError(office_id)
        if not User.objects.filter(id=user_id).exists():
            raise UserNotFoundError(user_id)
        if not CompanyMembership.objects.is_member(user_id, office.company_id):
            raise ValidationError("User is not a member of the office's company", field='office_id')

        with transaction.atomic():
            access, created = OfficeAccess.objects.get_or_create(
                user_id=user_id,
                office=office,
                defaults={'assigned_by': assigned_by},
            )
            if created:
                AuditLog.log_action(
                    action='office_access_granted',
                    user=assigned_by,
                    company_id=office.company_id,
                    target_type='Office',
                    target_id=office.id,
                    diff={'user_id': str(user_id)},
                    request=request,
                )

        if created:
            logger.info("Office access granted", extra={'user_id': str(user_id), 'office_id': str(office.id)})
        return access, created

    @classmethod
    @transaction.atomic
    def revoke(cls, user_id, office_id, revoked_by: Optional[User] = None, request=None) -> bool:
        """
        Remove an office from the user's allowed set, clearing the current
        office pointer if it pointed there. Revoking an absent grant is a no-op.
        """
        user = cls._lock_user(user_id)

        access = OfficeAccess.objects.select_related('office').filter(user=user, office_id=office_id).first()
        if access is None:
            return False

        cleared = False
        if user.current_office_id is not None and str(user.current_office_id) == str(office_id):
            user.current_office = None
            user.save(update_fields=['current_office', 'updated_at'])
            cleared = True

        company_id = access.office.company_id
        access.delete()

        AuditLog.log_action(
            action='office_access_revoked',
            user=revoked_by,
            company_id=company_id,
            target_type='Office',
            target_id=office_id,
            diff={'user_id': str(user_id), 'current_office_cleared': cleared},
            request=request,
        )
        logger.info(
            "Office access revoked",
            extra={'user_id': str(user_id), 'office_id': str(office_id), 'current_office_cleared': cleared}
        )
        return True

    @classmethod
    @transaction.atomic
    def set_current(cls, user_id, office_id, changed_by: Optional[User] = None, request=None) -> User:
        """
        Point the user's current office at an allowed office, or clear it.

        Raises:
            UserNotFoundError
            OfficeNotAllowedError: office is not in the user's allowed set
        """
        user = cls._lock_user(user_id)

        if office_id is None:
            user.current_office = None
        else:
            access = OfficeAccess.objects.select_related('office').filter(user=user, office_id=office_id).first()
            if access is None:
                raise OfficeNotAllowedError(user_id, office_id)
            user.current_office = access.office

        user.save(update_fields=['current_office', 'updated_at'])
        AuditLog.log_action(
            action='current_office_set',
            user=changed_by,
            company_id=user.current_office.company_id if user.current_office else None,
            target_type='User',
            target_id=user.id,
            diff={'current_office_id': str(office_id) if office_id else None},
            request=request,
        )
        return user

    @classmethod
    def purge_office(cls, office_id) -> dict:
        """
        Remove every grant of an office and clear it as anyone's current office.

        Must run inside the caller's transaction (see OfficeService.delete_office).
        """
        cleared = User.objects_with_deleted.filter(current_office_id=office_id).update(current_office=None)
        removed, _ = OfficeAccess.objects.filter(office_id=office_id).delete()
        return {'access_removed': removed, 'current_cleared': cleared}

    @classmethod
    @transaction.atomic
    def revoke_company(cls, user_id, company_id, revoked_by: Optional[User] = None) -> int:
        """
        Remove every grant the user holds on the company's offices, clearing
        the current office pointer if it was one of them.
        """
        user = User.objects_with_deleted.select_for_update().filter(id=user_id).first()
        if user is None:
            raise UserNotFoundError(user_id)

        if user.current_office_id is not None and Office.objects.filter(
            id=user.current_office_id, company_id=company_id
        ).exists():
            user.current_office = None
            user.save(update_fields=['current_office', 'updated_at'])

        removed, _ = OfficeAccess.objects.filter(user_id=user_id, office__company_id=company_id).delete()
        if removed:
            AuditLog.log_action(
                action='office_access_revoked_all',
                user=revoked_by,
                company_id=company_id,
                target_type='User',
                target_id=user_id,
                metadata={'count': removed},
            )
        return removed
