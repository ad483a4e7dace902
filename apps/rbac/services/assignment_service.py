"""
Role assignment graph: which roles a user holds in which company, and the
effective permission set that results.
"""
import logging
from typing import FrozenSet, List, Optional

from django.conf import settings
from django.core.cache import cache
from django.db import transaction

from apps.core.exceptions import AdminError
from apps.core.logging import SecurityLogger
from apps.rbac.exceptions import (
    CrossCompanyRoleError,
    RoleNotFoundError,
    SelfLockoutError,
    UserNotFoundError,
)
from apps.rbac.models import AuditLog, CompanyMembership, Role, RoleAssignment, User

logger = logging.getLogger(__name__)


class RoleAssignmentService:
    """
    Service for user/role/company assignments.

    Every read and write takes the company id explicitly; nothing here
    infers a company from the user.
    """

    @staticmethod
    def cache_key(user_id, company_id) -> str:
        return f"permissions:{user_id}:{company_id}"

    @classmethod
    def effective_permissions(cls, user_id, company_id) -> FrozenSet[str]:
        """
        Union of the permissions of every role the user holds in the company.

        Only roles visible to the company contribute, so an assignment row
        can never carry another company's role into this computation.
        Results are cached per (user, company).
        """
        key = cls.cache_key(user_id, company_id)
        cached = cache.get(key)
        if cached is not None:
            return frozenset(cached)

        rows = (
            Role.objects.visible_to(company_id)
            .filter(assignments__user_id=user_id, assignments__company_id=company_id)
            .values_list('permissions', flat=True)
        )
        effective = set()
        for role_permissions in rows:
            effective.update(role_permissions or [])

        cache.set(key, sorted(effective), settings.PERMISSION_CACHE_TTL)
        return frozenset(effective)

    @classmethod
    def invalidate(cls, user_id, company_id):
        key = cls.cache_key(user_id, company_id)
        cache.delete(key)
        # A concurrent request may recompute from pre-commit rows.
        transaction.on_commit(lambda: cache.delete(key))

    @classmethod
    def invalidate_role(cls, role_id):
        """Drop cached permissions of every holder of a role."""
        keys = [
            cls.cache_key(user_id, company_id)
            for user_id, company_id in RoleAssignment.objects.for_role(role_id).values_list('user_id', 'company_id')
        ]
        if keys:
            cache.delete_many(keys)
            transaction.on_commit(lambda: cache.delete_many(keys))

    @classmethod
    def _check_role_scope(cls, role, company_id, assigned_by=None):
        if role.type == Role.TYPE_PLATFORM or (
            role.type == Role.TYPE_COMPANY and str(role.company_id) != str(company_id)
        ):
            SecurityLogger.log_cross_company_attempt(
                actor_id=getattr(assigned_by, 'id', None),
                company_id=company_id,
                role_id=role.id,
                role_company_id=role.company_id,
            )
            raise CrossCompanyRoleError(role, company_id)

    @classmethod
    def assign(cls, user_id, role_id, company_id, assigned_by: Optional[User] = None, request=None):
        """
        Give a user a role within a company. Idempotent.

        Returns:
            (RoleAssignment, created) tuple

        Raises:
            RoleNotFoundError: role does not exist
            UserNotFoundError: user does not exist or is not a member of the company
            CrossCompanyRoleError: role belongs to another company or is a platform role
        """
        role = Role.objects.filter(id=role_id).first()
        if role is None:
            raise RoleNotFoundError(role_id)
        cls._check_role_scope(role, company_id, assigned_by)

        if not User.objects.filter(id=user_id).exists():
            raise UserNotFoundError(user_id)
        if not CompanyMembership.objects.is_member(user_id, company_id):
            raise UserNotFoundError(user_id, message='User is not a member of this company')

        with transaction.atomic():
            assignment, created = RoleAssignment.objects.get_or_create(
                user_id=user_id,
                role=role,
                company_id=company_id,
                defaults={'assigned_by': assigned_by},
            )
            if created:
                cls.invalidate(user_id, company_id)
                AuditLog.log_action(
                    action='role_assigned',
                    user=assigned_by,
                    company_id=company_id,
                    target_type='RoleAssignment',
                    target_id=assignment.id,
                    diff={'user_id': str(user_id), 'role_id': str(role.id), 'role_name': role.name},
                    request=request,
                )

        logger.info(
            "Role assigned" if created else "Role already assigned",
            extra={
                'user_id': str(user_id),
                'role_id': str(role.id),
                'company_id': str(company_id),
            }
        )
        return assignment, created

    @classmethod
    @transaction.atomic
    def revoke(cls, user_id, role_id, company_id, revoked_by: Optional[User] = None, request=None) -> bool:
        """Remove a role from a user within a company. Revoking an unheld role is a no-op."""
        deleted, _ = RoleAssignment.objects.filter(
            user_id=user_id, role_id=role_id, company_id=company_id
        ).delete()
        if not deleted:
            return False

        cls.invalidate(user_id, company_id)
        AuditLog.log_action(
            action='role_revoked',
            user=revoked_by,
            company_id=company_id,
            target_type='Role',
            target_id=role_id,
            diff={'user_id': str(user_id)},
            request=request,
        )
        logger.info(
            "Role revoked",
            extra={'user_id': str(user_id), 'role_id': str(role_id), 'company_id': str(company_id)}
        )
        return True

    @classmethod
    @transaction.atomic
    def revoke_all(cls, user_id, company_id, revoked_by: Optional[User] = None) -> int:
        """Remove every role the user holds in the company."""
        deleted, _ = RoleAssignment.objects.for_user_in_company(user_id, company_id).delete()
        if deleted:
            cls.invalidate(user_id, company_id)
            AuditLog.log_action(
                action='roles_revoked_all',
                user=revoked_by,
                company_id=company_id,
                target_type='User',
                target_id=user_id,
                metadata={'count': deleted},
            )
        return deleted

    @classmethod
    def roles_for(cls, user_id, company_id):
        return Role.objects.visible_to(company_id).filter(
            assignments__user_id=user_id, assignments__company_id=company_id
        ).distinct()

    @classmethod
    def users_with_role(cls, role_id, company_id):
        return User.objects.filter(
            role_assignments__role_id=role_id, role_assignments__company_id=company_id
        ).distinct()

    @classmethod
    def default_roles_for(cls, company_id):
        """
        Roles granted automatically on onboarding: the company's own default
        roles plus default system roles.
        """
        return Role.objects.visible_to(company_id).filter(is_default=True)

    @classmethod
    def assign_defaults(cls, user_id, company_id, assigned_by: Optional[User] = None) -> List[Role]:
        """Grant every default role of the company. Returns the roles newly assigned."""
        granted = []
        for role in cls.default_roles_for(company_id):
            _, created = cls.assign(user_id, role.id, company_id, assigned_by=assigned_by)
            if created:
                granted.append(role)
        return granted

    @classmethod
    def bulk_assign(cls, items, company_id, assigned_by: Optional[User] = None, request=None):
        """
        Assign many (user_id, role_id) pairs. Each item succeeds or fails on
        its own; failures are reported, not raised.

        Returns:
            List of dicts: user_id, role_id, success, created, error
        """
        results = []
        for item in items:
            user_id, role_id = item['user_id'], item['role_id']
            result = {'user_id': str(user_id), 'role_id': str(role_id)}
            try:
                _, created = cls.assign(user_id, role_id, company_id, assigned_by=assigned_by, request=request)
            except AdminError as exc:
                result.update(success=False, created=False, error=exc.to_dict())
            else:
                result.update(success=True, created=created, error=None)
            results.append(result)

        logger.info(
            "Bulk role assignment processed",
            extra={
                'company_id': str(company_id),
                'total': len(results),
                'failed': sum(1 for result in results if not result['success']),
            }
        )
        return results

    @classmethod
    @transaction.atomic
    def assign_platform_role(cls, user_id, role_id, assigned_by: Optional[User] = None, request=None) -> User:
        """Make a user a platform operator with the given platform role."""
        role = Role.objects.filter(id=role_id, type=Role.TYPE_PLATFORM).first()
        if role is None:
            raise RoleNotFoundError(role_id)
        user = User.objects.select_for_update().filter(id=user_id).first()
        if user is None:
            raise UserNotFoundError(user_id)

        user.platform_role = role
        user.save(update_fields=['platform_role', 'updated_at'])
        AuditLog.log_action(
            action='platform_role_assigned',
            user=assigned_by,
            target_type='User',
            target_id=user.id,
            diff={'role_id': str(role.id), 'role_name': role.name},
            request=request,
        )
        return user

    @classmethod
    @transaction.atomic
    def clear_platform_role(cls, user_id, cleared_by: Optional[User] = None, request=None) -> bool:
        """
        Take the platform role away from a user. Operators cannot clear their own.

        Raises:
            SelfLockoutError
        """
        if cleared_by is not None and str(cleared_by.id) == str(user_id):
            raise SelfLockoutError('Cannot remove your own platform role', user_id)
        updated = User.objects.filter(id=user_id, platform_role__isnull=False).update(platform_role=None)
        if updated:
            AuditLog.log_action(
                action='platform_role_cleared',
                user=cleared_by,
                target_type='User',
                target_id=user_id,
                request=request,
            )
        return bool(updated)

    @classmethod
    def platform_permissions(cls, user_id) -> FrozenSet[str]:
        """Permissions of the user's platform role; never mixed with company permissions."""
        user = User.objects.select_related('platform_role').filter(id=user_id).first()
        if user is None or user.platform_role is None:
            return frozenset()
        return user.platform_role.permission_set
