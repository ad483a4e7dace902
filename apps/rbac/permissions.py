"""
Permission catalog and wildcard matcher.

A permission is a ``resource:action`` string or a wildcard (``*`` for
everything, ``resource:*`` for every action on a resource). Permissions
are not database rows: the catalog below is static, and roles store the
permission strings they grant.

Every authorization decision funnels through ``matches``; nothing else
in the code base compares permission strings.
"""
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from apps.core.exceptions import ValidationError

WILDCARD = '*'
RESOURCE_WILDCARD_SUFFIX = ':*'
PLATFORM_PREFIX = 'platform:'


@dataclass(frozen=True)
class PermissionMeta:
    """Display metadata for one catalog permission."""
    code: str
    label: str
    category: str
    description: str


class Permission(str):
    """
    A permission string that passed ``parse_permission``.

    Behaves as a plain ``str`` everywhere (storage, JSON, comparison).
    """
    __slots__ = ()

    @property
    def is_wildcard(self) -> bool:
        return self == WILDCARD or self.endswith(RESOURCE_WILDCARD_SUFFIX)

    @property
    def resource(self) -> Optional[str]:
        if self == WILDCARD:
            return None
        return self.split(':', 1)[0]


def _entry(code, label, category, description):
    return PermissionMeta(code=code, label=label, category=category, description=description)


CATALOG: Tuple[PermissionMeta, ...] = (
    # Customers
    _entry('customer:read', 'View Customers', 'Customers', 'View customer list and details'),
    _entry('customer:create', 'Create Customers', 'Customers', 'Create new customers'),
    _entry('customer:update', 'Edit Customers', 'Customers', 'Edit existing customers'),
    _entry('customer:delete', 'Delete Customers', 'Customers', 'Delete customers'),
    # Users
    _entry('user:read', 'View Users', 'Users', 'View user list and details'),
    _entry('user:create', 'Invite Users', 'Users', 'Invite new users'),
    _entry('user:update', 'Edit Users', 'Users', 'Edit existing users and their office access'),
    _entry('user:delete', 'Delete Users', 'Users', 'Delete users'),
    _entry('user:activate', 'Activate Users', 'Users', 'Activate or deactivate users'),
    # Offices
    _entry('office:read', 'View Offices', 'Offices', 'View office list and details'),
    _entry('office:create', 'Create Offices', 'Offices', 'Create new offices'),
    _entry('office:update', 'Edit Offices', 'Offices', 'Edit existing offices'),
    _entry('office:delete', 'Delete Offices', 'Offices', 'Delete offices'),
    # Roles
    _entry('role:read', 'View Roles', 'Roles & Permissions', 'View roles and permissions'),
    _entry('role:create', 'Create Roles', 'Roles & Permissions', 'Create new roles'),
    _entry('role:update', 'Edit Roles', 'Roles & Permissions', 'Edit existing roles'),
    _entry('role:delete', 'Delete Roles', 'Roles & Permissions', 'Delete roles'),
    _entry('role:assign', 'Assign Roles', 'Roles & Permissions', 'Assign roles to users'),
    # Reports
    _entry('report:read', 'View Reports', 'Reports', 'View reports and analytics'),
    _entry('report:export', 'Export Reports', 'Reports', 'Export reports to files'),
    # Settings
    _entry('settings:read', 'View Settings', 'Settings', 'View company settings'),
    _entry('settings:update', 'Edit Settings', 'Settings', 'Modify company settings'),
    # Company
    _entry('company:read', 'View Company', 'Company', 'View company details'),
    _entry('company:update', 'Edit Company', 'Company', 'Edit company details'),
    # Files
    _entry('file:read', 'View Files', 'Files', 'View and download files'),
    _entry('file:create', 'Upload Files', 'Files', 'Upload new files'),
    _entry('file:update', 'Edit Files', 'Files', 'Edit file metadata'),
    _entry('file:delete', 'Delete Files', 'Files', 'Delete files'),
    # Data migration
    _entry('data:migration', 'Data Migration', 'Data Migration', 'Import data from external systems'),
    # Price guide
    _entry('price_guide:import_export', 'Import/Export Price Guide', 'Price Guide',
           'Bulk import and export of the price guide'),
    # Platform (internal operators only)
    _entry('platform:admin', 'Platform Admin', 'Platform', 'Full platform administration'),
    _entry('platform:view_companies', 'View Companies', 'Platform', 'View all companies on the platform'),
    _entry('platform:create_company', 'Create Company', 'Platform', 'Create new companies'),
    _entry('platform:update_company', 'Edit Company', 'Platform', 'Edit any company'),
    _entry('platform:switch_company', 'Switch Company', 'Platform', 'Act within any company'),
    _entry('platform:view_audit_logs', 'View Audit Logs', 'Platform', 'View platform audit logs'),
    _entry('platform:manage_internal_users', 'Manage Internal Users', 'Platform',
           'Manage platform operator accounts'),
)

_BY_CODE: Dict[str, PermissionMeta] = {meta.code: meta for meta in CATALOG}


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------

def matches(required: str, held: str) -> bool:
    """
    Return True if the held pattern grants the required permission.

    Case-sensitive, no normalization: ``*`` grants everything, an exact
    string grants itself, and ``resource:*`` grants ``resource:<anything>``.
    """
    if held == WILDCARD:
        return True
    if held == required:
        return True
    if held.endswith(RESOURCE_WILDCARD_SUFFIX):
        prefix = held[:-len(RESOURCE_WILDCARD_SUFFIX)]
        return required.startswith(prefix + ':')
    return False


def has_permission(required: str, held: Iterable[str]) -> bool:
    """True iff any held pattern grants the single required permission."""
    return any(matches(required, pattern) for pattern in held)


def holds_all(required: Iterable[str], held: Iterable[str]) -> bool:
    """Every required permission is granted. An empty requirement is satisfied."""
    held = tuple(held)
    return all(has_permission(permission, held) for permission in required)


def holds_any(required: Iterable[str], held: Iterable[str]) -> bool:
    """At least one required permission is granted. An empty requirement is never satisfied."""
    held = tuple(held)
    return any(has_permission(permission, held) for permission in required)


def missing_permissions(required: Iterable[str], held: Iterable[str]) -> List[str]:
    """Required permissions that no held pattern grants, in input order."""
    held = tuple(held)
    return [permission for permission in required if not has_permission(permission, held)]


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

def get(code: str) -> Optional[PermissionMeta]:
    return _BY_CODE.get(code)


def all_codes() -> List[str]:
    return [meta.code for meta in CATALOG]


def by_category() -> 'OrderedDict[str, List[PermissionMeta]]':
    """Catalog entries grouped by category, in catalog order."""
    grouped = OrderedDict()
    for meta in CATALOG:
        grouped.setdefault(meta.category, []).append(meta)
    return grouped


def _resource_category(resource: str) -> Optional[str]:
    for meta in CATALOG:
        if meta.code.startswith(resource + ':'):
            return meta.category
    return None


def label_for(code: str) -> str:
    """Human label for a catalog code or wildcard pattern."""
    if code == WILDCARD:
        return 'All permissions'
    meta = _BY_CODE.get(code)
    if meta:
        return meta.label
    if code.endswith(RESOURCE_WILDCARD_SUFFIX):
        category = _resource_category(code[:-len(RESOURCE_WILDCARD_SUFFIX)])
        if category:
            return f'All {category} permissions'
    return code


def expand_wildcard(pattern: str) -> List[str]:
    """Catalog codes granted by a pattern."""
    return [meta.code for meta in CATALOG if matches(meta.code, pattern)]


def is_platform_permission(code: str) -> bool:
    return code.startswith(PLATFORM_PREFIX)


def company_permissions() -> List[str]:
    """Catalog codes that can be granted inside a company."""
    return [code for code in all_codes() if not is_platform_permission(code)]


def read_only_permissions() -> List[str]:
    return [code for code in all_codes() if code.endswith(':read')]


def _is_valid(raw) -> bool:
    if not isinstance(raw, str):
        return False
    if raw == WILDCARD or raw in _BY_CODE:
        return True
    if raw.endswith(RESOURCE_WILDCARD_SUFFIX):
        resource = raw[:-len(RESOURCE_WILDCARD_SUFFIX)]
        return bool(resource) and any(code.startswith(resource + ':') for code in _BY_CODE)
    return False


def parse_permission(raw) -> Permission:
    """
    Validate a raw string and return it as a Permission.

    Raises:
        ValidationError: if the string is neither ``*``, a catalog code,
            nor ``resource:*`` for a resource that exists in the catalog
    """
    if not _is_valid(raw):
        raise ValidationError(
            f"Invalid permission: {raw!r}",
            field='permissions',
            details={'invalid_permissions': [raw]},
        )
    return Permission(raw)


def validate_permissions(raw_permissions: Iterable) -> List:
    """Return the entries that are not valid permissions (empty when all are)."""
    return [raw for raw in raw_permissions if not _is_valid(raw)]


def normalize_permissions(raw_permissions: Iterable, field: str = 'permissions') -> List[Permission]:
    """
    Parse a permission list for storage on a role.

    Duplicates collapse, keeping first-seen order.

    Raises:
        ValidationError: if the list is empty or holds invalid entries
    """
    raw_permissions = list(raw_permissions or [])
    if not raw_permissions:
        raise ValidationError('At least one permission is required', field=field)

    invalid = validate_permissions(raw_permissions)
    if invalid:
        raise ValidationError(
            'Invalid permissions',
            field=field,
            details={'invalid_permissions': invalid},
        )

    return [Permission(code) for code in OrderedDict.fromkeys(raw_permissions)]


