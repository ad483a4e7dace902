"""
Management command to seed the built-in system and platform roles.

Idempotent: existing roles are left alone unless --force is given, in which
case their permissions and labels are reset to the definitions below.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.rbac import permissions as perms
from apps.rbac.models import Role
from apps.rbac.services import RoleAssignmentService, RoleService


def _platform_permissions():
    return [code for code in perms.all_codes() if perms.is_platform_permission(code)]


class Command(BaseCommand):
    help = 'Seed built-in system and platform roles (idempotent)'

    SYSTEM_ROLES = {
        'superUser': {
            'display_name': 'Super User',
            'description': 'Every permission in the company',
            'permissions': [perms.WILDCARD],
        },
        'admin': {
            'display_name': 'Administrator',
            'description': 'Manage customers, users, offices, roles and settings',
            'permissions': [
                'customer:*', 'user:*', 'office:*', 'role:*', 'settings:*', 'company:*',
                'report:read', 'report:export',
            ],
        },
        'salesRep': {
            'display_name': 'Sales Representative',
            'description': 'Work with customers and read reports',
            'permissions': [
                'customer:read', 'customer:create', 'customer:update',
                'office:read', 'report:read', 'settings:read',
            ],
            'is_default': True,
        },
        'viewer': {
            'display_name': 'Viewer',
            'description': 'Read-only access',
            'permissions': ['customer:read', 'office:read', 'report:read'],
        },
    }

    PLATFORM_ROLES = {
        'platformAdmin': {
            'display_name': 'Platform Administrator',
            'description': 'Full platform administration',
            'permissions': _platform_permissions,
        },
    }

    def add_arguments(self, parser):
        parser.add_argument(
            '--force',
            action='store_true',
            help='Reset existing built-in roles to their default permissions',
        )

    def handle(self, *args, **options):
        force = options['force']
        created_count = 0
        reset_count = 0

        definitions = [(Role.TYPE_SYSTEM, self.SYSTEM_ROLES), (Role.TYPE_PLATFORM, self.PLATFORM_ROLES)]
        for role_type, roles in definitions:
            for name, config in roles.items():
                created, reset = self._seed_role(role_type, name, config, force)
                created_count += created
                reset_count += reset

        self.stdout.write(
            self.style.SUCCESS(
                f'Seeding complete: {created_count} roles created, {reset_count} roles reset'
            )
        )

    @transaction.atomic
    def _seed_role(self, role_type, name, config, force):
        permissions = config['permissions']
        if callable(permissions):
            permissions = permissions()

        role = Role.objects.filter(type=role_type, company__isnull=True, name=name).first()
        if role is None:
            RoleService.create_global_role(
                role_type,
                name,
                config['display_name'],
                permissions,
                description=config['description'],
                is_default=config.get('is_default', False),
            )
            self.stdout.write(self.style.SUCCESS(f'  Created role: {name}'))
            return 1, 0

        if not force:
            self.stdout.write(self.style.HTTP_INFO(f'    Exists: {name}'))
            return 0, 0

        role.display_name = config['display_name']
        role.description = config['description']
        role.permissions = perms.normalize_permissions(permissions)
        role.is_default = config.get('is_default', False)
        role.save()
        RoleAssignmentService.invalidate_role(role.id)
        self.stdout.write(self.style.WARNING(f'  Reset role: {name}'))
        return 0, 1
