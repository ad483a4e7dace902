"""
Role entity store: creation, update, deletion and cloning of roles.
"""
import logging
import re
from typing import Iterable, Optional

from django.db import IntegrityError, transaction
from django.db.models import Count, Q
from django.db.models.deletion import RestrictedError

from apps.rbac import permissions as perms
from apps.rbac.exceptions import (
    ImmutableRoleError,
    RoleInUseError,
    RoleNotFoundError,
    ValidationError,
)
from apps.rbac.models import AuditLog, Role, RoleAssignment, User
from apps.rbac.services.assignment_service import RoleAssignmentService

logger = logging.getLogger(__name__)

ROLE_NAME_RE = re.compile(r'^[a-zA-Z][a-zA-Z0-9_-]*$')
NAME_MAX_LENGTH = 100
DISPLAY_NAME_MAX_LENGTH = 255
DESCRIPTION_MAX_LENGTH = 500

UPDATABLE_FIELDS = ('display_name', 'description', 'permissions', 'is_default')


class RoleService:
    """Service for role definitions."""

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_name(name):
        if not isinstance(name, str) or not name:
            raise ValidationError('Role name is required', field='name')
        if len(name) > NAME_MAX_LENGTH:
            raise ValidationError(f'Role name must be at most {NAME_MAX_LENGTH} characters', field='name')
        if not ROLE_NAME_RE.match(name):
            raise ValidationError(
                'Role name must start with a letter and contain only letters, numbers, underscores and hyphens',
                field='name',
            )

    @staticmethod
    def _clean_display_name(display_name):
        display_name = (display_name or '').strip()
        if not display_name:
            raise ValidationError('Display name is required', field='display_name')
        if len(display_name) > DISPLAY_NAME_MAX_LENGTH:
            raise ValidationError(
                f'Display name must be at most {DISPLAY_NAME_MAX_LENGTH} characters', field='display_name'
            )
        return display_name

    @staticmethod
    def _clean_description(description):
        description = description or ''
        if len(description) > DESCRIPTION_MAX_LENGTH:
            raise ValidationError(
                f'Description must be at most {DESCRIPTION_MAX_LENGTH} characters', field='description'
            )
        return description

    @staticmethod
    def _clean_company_permissions(raw_permissions):
        permissions = perms.normalize_permissions(raw_permissions)
        platform = [code for code in permissions if perms.is_platform_permission(code)]
        if platform:
            raise ValidationError(
                'Platform permissions cannot be granted by company roles',
                field='permissions',
                details={'invalid_permissions': platform},
            )
        return permissions

    @staticmethod
    def _name_taken(name, company_id):
        scope = Q(company__isnull=True)
        if company_id is not None:
            scope |= Q(company_id=company_id)
        return Role.objects.filter(scope, name=name).exists()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @classmethod
    def list_for_company(cls, company_id):
        """System roles plus the company's roles, with per-company assignment counts."""
        return Role.objects.visible_to(company_id).annotate(
            assignment_count=Count('assignments', filter=Q(assignments__company_id=company_id))
        ).order_by('type', 'name')

    @classmethod
    def get_visible(cls, role_id, company_id) -> Role:
        role = Role.objects.visible_to(company_id).filter(id=role_id).first()
        if role is None:
            raise RoleNotFoundError(role_id)
        return role

    @classmethod
    def _get_mutable(cls, role_id, company_id, lock=False) -> Role:
        qs = Role.objects.select_for_update() if lock else Role.objects.all()
        role = qs.filter(id=role_id).first()
        if role is None:
            raise RoleNotFoundError(role_id)
        if role.is_global:
            raise ImmutableRoleError(role)
        if str(role.company_id) != str(company_id):
            raise RoleNotFoundError(role_id)
        return role

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @classmethod
    def create(cls, company_id, name, display_name, permissions: Iterable[str], description='',
               is_default=False, created_by: Optional[User] = None, request=None) -> Role:
        """
        Create a company role.

        Raises:
            ValidationError: invalid or duplicate name, empty or invalid permissions
        """
        cls._validate_name(name)
        display_name = cls._clean_display_name(display_name)
        description = cls._clean_description(description)
        permissions = cls._clean_company_permissions(permissions)

        if cls._name_taken(name, company_id):
            raise ValidationError(f"Role name '{name}' already exists", field='name')

        try:
            with transaction.atomic():
                role = Role.objects.create(
                    type=Role.TYPE_COMPANY,
                    company_id=company_id,
                    name=name,
                    display_name=display_name,
                    description=description,
                    permissions=permissions,
                    is_default=is_default,
                )
                AuditLog.log_action(
                    action='role_created',
                    user=created_by,
                    company_id=company_id,
                    target_type='Role',
                    target_id=role.id,
                    diff={'name': name, 'permissions': permissions, 'is_default': is_default},
                    request=request,
                )
        except IntegrityError:
            raise ValidationError(f"Role name '{name}' already exists", field='name')

        logger.info("Role created", extra={'role_id': str(role.id), 'company_id': str(company_id)})
        return role

    @classmethod
    def create_global_role(cls, role_type, name, display_name, permissions, description='',
                           is_default=False) -> Role:
        """Create a system or platform role. Used by seeding and the platform role endpoints."""
        if role_type not in (Role.TYPE_SYSTEM, Role.TYPE_PLATFORM):
            raise ValidationError('Global roles must be system or platform roles', field='type')
        cls._validate_name(name)
        display_name = cls._clean_display_name(display_name)
        permissions = perms.normalize_permissions(permissions)

        if cls._name_taken(name, None):
            raise ValidationError(f"Role name '{name}' already exists", field='name')

        try:
            with transaction.atomic():
                return Role.objects.create(
                    type=role_type,
                    company=None,
                    name=name,
                    display_name=display_name,
                    description=cls._clean_description(description),
                    permissions=permissions,
                    is_default=is_default,
                )
        except IntegrityError:
            raise ValidationError(f"Role name '{name}' already exists", field='name')

    @classmethod
    @transaction.atomic
    def update(cls, role_id, company_id, patch: dict, updated_by: Optional[User] = None, request=None) -> Role:
        """
        Change display name, description, permissions or default flag of a
        company role. The name never changes.

        Raises:
            RoleNotFoundError: role missing or owned by another company
            ImmutableRoleError: system or platform role
            ValidationError: name change, unknown field or invalid values
        """
        role = cls._get_mutable(role_id, company_id, lock=True)

        if 'name' in patch and patch['name'] != role.name:
            raise ValidationError('Role name cannot be changed', field='name')
        unknown = sorted(set(patch) - set(UPDATABLE_FIELDS) - {'name'})
        if unknown:
            raise ValidationError(f"Unknown field: {unknown[0]}", field=unknown[0])

        diff = {}
        if 'display_name' in patch:
            diff['display_name'] = [role.display_name, cls._clean_display_name(patch['display_name'])]
            role.display_name = diff['display_name'][1]
        if 'description' in patch:
            diff['description'] = [role.description, cls._clean_description(patch['description'])]
            role.description = diff['description'][1]
        if 'permissions' in patch:
            diff['permissions'] = [list(role.permissions), cls._clean_company_permissions(patch['permissions'])]
            role.permissions = diff['permissions'][1]
        if 'is_default' in patch:
            diff['is_default'] = [role.is_default, bool(patch['is_default'])]
            role.is_default = diff['is_default'][1]

        role.save()
        if 'permissions' in diff:
            RoleAssignmentService.invalidate_role(role.id)

        AuditLog.log_action(
            action='role_updated',
            user=updated_by,
            company_id=company_id,
            target_type='Role',
            target_id=role.id,
            diff=diff,
            request=request,
        )
        logger.info("Role updated", extra={'role_id': str(role.id), 'fields': sorted(diff)})
        return role

    @classmethod
    @transaction.atomic
    def delete(cls, role_id, company_id, force=False, deleted_by: Optional[User] = None, request=None) -> dict:
        """
        Delete a company role.

        Without ``force`` the role must have no assignments. With ``force``
        its assignments are deleted first; both deletions commit together.

        Raises:
            RoleNotFoundError: role missing or owned by another company
            ImmutableRoleError: system or platform role
            RoleInUseError: role has assignments and force is false
        """
        role = cls._get_mutable(role_id, company_id, lock=True)

        assignments = RoleAssignment.objects.for_role(role.id)
        holders = list(assignments.values_list('user_id', 'company_id'))
        if holders and not force:
            raise RoleInUseError(role, len(holders))

        removed, _ = assignments.delete()
        try:
            with transaction.atomic():
                role.delete()
        except (RestrictedError, IntegrityError):
            raise RoleInUseError(role, RoleAssignment.objects.for_role(role.id).count())

        for user_id, holder_company_id in holders:
            RoleAssignmentService.invalidate(user_id, holder_company_id)

        AuditLog.log_action(
            action='role_deleted',
            user=deleted_by,
            company_id=company_id,
            target_type='Role',
            target_id=role_id,
            diff={'name': role.name},
            metadata={'force': force, 'assignments_removed': removed},
            request=request,
        )
        logger.info(
            "Role deleted",
            extra={'role_id': str(role_id), 'company_id': str(company_id), 'assignments_removed': removed}
        )
        return {'assignments_removed': removed}

    @classmethod
    def _clone_name(cls, source_name, company_id):
        base = f"{source_name}_copy"[:NAME_MAX_LENGTH - 3]
        taken = set(
            Role.objects.filter(
                Q(company__isnull=True) | Q(company_id=company_id), name__startswith=base
            ).values_list('name', flat=True)
        )
        if base not in taken:
            return base
        suffix = 2
        while f"{base}{suffix}" in taken:
            suffix += 1
        return f"{base}{suffix}"

    @classmethod
    def clone(cls, role_id, company_id, name=None, display_name=None, description=None,
              created_by: Optional[User] = None, request=None) -> Role:
        """
        Copy a system or company role into a new company role.

        The source is never modified. Without a name the copy is called
        ``<source>_copy`` (then ``_copy2``, ``_copy3``...).
        """
        source = cls.get_visible(role_id, company_id)
        role = cls.create(
            company_id=company_id,
            name=name or cls._clone_name(source.name, company_id),
            display_name=display_name or f"{source.display_name} (Copy)",
            description=source.description if description is None else description,
            permissions=list(source.permissions),
            is_default=False,
            created_by=created_by,
            request=request,
        )
        AuditLog.log_action(
            action='role_cloned',
            user=created_by,
            company_id=company_id,
            target_type='Role',
            target_id=role.id,
            metadata={'source_role_id': str(source.id), 'source_type': source.type},
            request=request,
        )
        return role

    # ------------------------------------------------------------------
    # Platform roles
    # ------------------------------------------------------------------

    @staticmethod
    def _clean_platform_permissions(raw_permissions):
        permissions = perms.normalize_permissions(raw_permissions)
        if not any(perms.is_platform_permission(code) for code in permissions):
            raise ValidationError(
                'At least one platform permission (platform:*) is required', field='permissions'
            )
        return permissions

    @classmethod
    def list_platform_roles(cls):
        return Role.objects.platform_roles().annotate(user_count=Count('platform_users')).order_by('name')

    @classmethod
    def _get_platform_role(cls, role_id, lock=False) -> Role:
        qs = Role.objects.select_for_update() if lock else Role.objects.all()
        role = qs.filter(id=role_id, type=Role.TYPE_PLATFORM).first()
        if role is None:
            raise RoleNotFoundError(role_id)
        return role

    @classmethod
    @transaction.atomic
    def create_platform_role(cls, name, display_name, permissions, description='',
                             created_by: Optional[User] = None, request=None) -> Role:
        """
        Create a platform role.

        Raises:
            ValidationError: invalid or duplicate name, or no platform permission
        """
        role = cls.create_global_role(
            Role.TYPE_PLATFORM,
            name,
            display_name,
            cls._clean_platform_permissions(permissions),
            description=description,
        )
        AuditLog.log_action(
            action='platform_role_created',
            user=created_by,
            target_type='Role',
            target_id=role.id,
            diff={'name': role.name, 'permissions': role.permissions},
            request=request,
        )
        return role

    @classmethod
    @transaction.atomic
    def update_platform_role(cls, role_id, patch: dict, updated_by: Optional[User] = None, request=None) -> Role:
        """Change display name, description or permissions of a platform role."""
        role = cls._get_platform_role(role_id, lock=True)

        unknown = sorted(set(patch) - {'display_name', 'description', 'permissions'})
        if unknown:
            raise ValidationError(f"Unknown field: {unknown[0]}", field=unknown[0])

        diff = {}
        if 'display_name' in patch:
            diff['display_name'] = [role.display_name, cls._clean_display_name(patch['display_name'])]
            role.display_name = diff['display_name'][1]
        if 'description' in patch:
            diff['description'] = [role.description, cls._clean_description(patch['description'])]
            role.description = diff['description'][1]
        if 'permissions' in patch:
            diff['permissions'] = [list(role.permissions), cls._clean_platform_permissions(patch['permissions'])]
            role.permissions = diff['permissions'][1]
        role.save()

        AuditLog.log_action(
            action='platform_role_updated',
            user=updated_by,
            target_type='Role',
            target_id=role.id,
            diff=diff,
            request=request,
        )
        return role

    @classmethod
    @transaction.atomic
    def delete_platform_role(cls, role_id, deleted_by: Optional[User] = None, request=None):
        """
        Delete a platform role nobody holds.

        Raises:
            RoleNotFoundError
            RoleInUseError: users still hold the role
        """
        role = cls._get_platform_role(role_id, lock=True)
        holders = User.objects_with_deleted.filter(platform_role=role).count()
        if holders:
            raise RoleInUseError(role, holders)

        role.delete()
        AuditLog.log_action(
            action='platform_role_deleted',
            user=deleted_by,
            target_type='Role',
            target_id=role_id,
            diff={'name': role.name},
            request=request,
        )
        logger.info("Platform role deleted", extra={'role_id': str(role_id)})
