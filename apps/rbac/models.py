"""
RBAC models for multi-company access control.

Implements:
- Global User identity (can belong to several companies)
- CompanyMembership linking a user to a company
- Role (system, company or platform scoped) holding permission strings
- RoleAssignment (user, role, company) triples
- OfficeAccess plus the user's current office pointer
- Invite (pending grants of roles and offices to an email address)
- AuditLog (audit trail for every access-control mutation)
"""
import hashlib
import logging
from django.contrib.auth.hashers import make_password, check_password
from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.core.models import BaseModel, SoftDeleteManager, SoftDeleteModel
from apps.rbac import permissions as perms

logger = logging.getLogger(__name__)


class UserManager(SoftDeleteManager):
    """
    Manager for User queries.

    Compatible with Django's authentication system and admin interface.
    """

    def active(self):
        """Return only active users."""
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find user by email."""
        return self.filter(email=self.normalize_email(email)).first()

    def create_user(self, email, password=None, **extra_fields):
        """Create a new user with hashed password."""
        if not email:
            raise ValueError('Email address is required')

        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)

        user = self.model(email=self.normalize_email(email), **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """Create a superuser with Django admin access."""
        extra_fields['is_superuser'] = True
        extra_fields.setdefault('email_verified', True)
        return self.create_user(email, password, **extra_fields)

    @staticmethod
    def normalize_email(email):
        """Emails are compared trimmed and lowercased everywhere."""
        return (email or '').strip().lower()

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: self.normalize_email(email)})


class User(SoftDeleteModel):
    """
    Global user identity - can belong to multiple companies.

    Authentication happens at the User level (handled outside this service);
    authorization is always evaluated for one company through RoleAssignment.
    """

    email = models.EmailField(
        unique=True,
        help_text="User email address (unique globally, stored lowercase)"
    )
    password_hash = models.CharField(
        max_length=255,
        blank=True,
        help_text="Hashed password",
        db_column='password_hash'
    )
    first_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100, blank=True)

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Django admin access only; grants nothing inside companies"
    )
    email_verified = models.BooleanField(default=False)
    last_login_at = models.DateTimeField(null=True, blank=True)

    current_office = models.ForeignKey(
        'companies.Office',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='current_users',
        help_text="Office the user is working in; always one of the user's allowed offices"
    )
    platform_role = models.ForeignKey(
        'Role',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='platform_users',
        limit_choices_to={'type': 'platform'},
        help_text="Platform operator role (internal users only)"
    )

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'created_at'], name='users_active_created_idx'),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        return self.is_superuser

    def has_perm(self, perm, obj=None):
        return self.is_superuser

    def has_perms(self, perm_list, obj=None):
        return self.is_superuser

    def has_module_perms(self, app_label):
        return self.is_superuser

    def natural_key(self):
        return (self.email,)


class CompanyMembershipManager(models.Manager):
    """Manager for company membership queries."""

    def active(self):
        return self.filter(is_active=True, user__deleted_at__isnull=True)

    def is_member(self, user_id, company_id):
        return self.active().filter(user_id=user_id, company_id=company_id).exists()


class CompanyMembership(BaseModel):
    """A user's membership in one company."""

    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        related_name='memberships'
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='memberships'
    )
    is_active = models.BooleanField(default=True, db_index=True)
    invited_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    joined_at = models.DateTimeField(default=timezone.now)
    last_accessed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last time the user switched into this company"
    )

    objects = CompanyMembershipManager()

    class Meta:
        db_table = 'company_memberships'
        constraints = [
            models.UniqueConstraint(fields=['company', 'user'], name='unique_membership'),
        ]

    def __str__(self):
        return f"{self.user} @ {self.company}"


class RoleManager(models.Manager):
    """Manager for role queries."""

    def visible_to(self, company_id):
        """System roles plus the company's own roles. Platform roles are never visible."""
        return self.filter(
            Q(type=Role.TYPE_SYSTEM) | Q(type=Role.TYPE_COMPANY, company_id=company_id)
        )

    def system_roles(self):
        return self.filter(type=Role.TYPE_SYSTEM)

    def platform_roles(self):
        return self.filter(type=Role.TYPE_PLATFORM)


class Role(BaseModel):
    """
    Named bundle of permission strings.

    system roles are global and read-only for companies, company roles
    belong to exactly one company, platform roles are for platform
    operators and never company scoped.
    """

    TYPE_SYSTEM = 'system'
    TYPE_COMPANY = 'company'
    TYPE_PLATFORM = 'platform'
    TYPE_CHOICES = [
        (TYPE_SYSTEM, 'System'),
        (TYPE_COMPANY, 'Company'),
        (TYPE_PLATFORM, 'Platform'),
    ]

    name = models.CharField(
        max_length=100,
        help_text="Machine name, unique within its scope"
    )
    display_name = models.CharField(max_length=255)
    description = models.CharField(max_length=500, blank=True)
    type = models.CharField(
        max_length=20,
        choices=TYPE_CHOICES,
        default=TYPE_COMPANY,
        db_index=True
    )
    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='roles',
        help_text="Owning company (company roles only)"
    )
    permissions = models.JSONField(
        default=list,
        help_text="Ordered, de-duplicated permission strings"
    )
    is_default = models.BooleanField(
        default=False,
        help_text="Granted automatically to users onboarded into the role's scope"
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['type', 'name']
        constraints = [
            models.UniqueConstraint(
                fields=['company', 'name'],
                condition=Q(company__isnull=False),
                name='unique_company_role_name',
            ),
            models.UniqueConstraint(
                fields=['name'],
                condition=Q(company__isnull=True),
                name='unique_global_role_name',
            ),
            models.CheckConstraint(
                condition=(
                    Q(type='company', company__isnull=False)
                    | Q(type__in=['system', 'platform'], company__isnull=True)
                ),
                name='role_scope_matches_type',
            ),
        ]

    def __str__(self):
        return self.display_name or self.name

    @property
    def is_global(self):
        return self.type in (self.TYPE_SYSTEM, self.TYPE_PLATFORM)

    @property
    def permission_set(self):
        return frozenset(self.permissions or [])

    def grants(self, permission):
        return perms.has_permission(permission, self.permissions or [])


class RoleAssignmentManager(models.Manager):
    """Manager for role assignment queries. Always filtered by company."""

    def for_user_in_company(self, user_id, company_id):
        return self.filter(user_id=user_id, company_id=company_id)

    def for_role(self, role_id, company_id=None):
        qs = self.filter(role_id=role_id)
        if company_id is not None:
            qs = qs.filter(company_id=company_id)
        return qs


class RoleAssignment(BaseModel):
    """One user holding one role within one company."""

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='role_assignments'
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.RESTRICT,
        related_name='assignments'
    )
    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        related_name='role_assignments'
    )
    assigned_at = models.DateTimeField(default=timezone.now)
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    objects = RoleAssignmentManager()

    class Meta:
        db_table = 'role_assignments'
        constraints = [
            models.UniqueConstraint(fields=['user', 'role', 'company'], name='unique_role_assignment'),
        ]
        indexes = [
            models.Index(fields=['user', 'company'], name='role_assign_user_company_idx'),
            models.Index(fields=['role', 'company'], name='role_assign_role_company_idx'),
        ]

    def __str__(self):
        return f"{self.user} - {self.role.name} @ {self.company}"


class OfficeAccess(BaseModel):
    """A user's permission to work in one office."""

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='office_access'
    )
    office = models.ForeignKey(
        'companies.Office',
        on_delete=models.CASCADE,
        related_name='access_grants'
    )
    assigned_at = models.DateTimeField(default=timezone.now)
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    class Meta:
        db_table = 'office_access'
        verbose_name_plural = 'office access'
        constraints = [
            models.UniqueConstraint(fields=['user', 'office'], name='unique_office_access'),
        ]

    def __str__(self):
        return f"{self.user} -> {self.office}"


class InviteManager(models.Manager):
    """Manager for invite queries."""

    def for_company(self, company_id):
        return self.filter(company_id=company_id)

    def pending(self):
        return self.filter(status=Invite.STATUS_PENDING)

    def by_token(self, token):
        return self.filter(token_hash=Invite.hash_token(token))


class Invite(BaseModel):
    """
    Pending grant of roles and offices to an email address.

    Only the SHA-256 digest of the invite token is stored.
    """

    STATUS_PENDING = 'pending'
    STATUS_ACCEPTED = 'accepted'
    STATUS_REVOKED = 'revoked'
    STATUS_SUPERSEDED = 'superseded'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_REVOKED, 'Revoked'),
        (STATUS_SUPERSEDED, 'Superseded'),
    ]

    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        related_name='invites'
    )
    email = models.EmailField(help_text="Invitee email (stored lowercase)")
    roles = models.ManyToManyField(Role, related_name='invites')
    current_office = models.ForeignKey(
        'companies.Office',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    allowed_offices = models.ManyToManyField('companies.Office', related_name='invites')
    token_hash = models.CharField(max_length=64, unique=True)
    expires_at = models.DateTimeField()
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True
    )
    is_existing_user_invite = models.BooleanField(
        default=False,
        help_text="Email belonged to a registered identity when the invite was issued"
    )
    invited_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='sent_invites'
    )
    accepted_at = models.DateTimeField(null=True, blank=True)
    accepted_user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    revoked_at = models.DateTimeField(null=True, blank=True)

    objects = InviteManager()

    class Meta:
        db_table = 'invites'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['company', 'email'],
                condition=Q(status='pending'),
                name='unique_pending_invite_per_email',
            ),
        ]
        indexes = [
            models.Index(fields=['company', 'status'], name='invites_company_status_idx'),
        ]

    def __str__(self):
        return f"{self.email} @ {self.company} ({self.status})"

    @staticmethod
    def hash_token(token):
        return hashlib.sha256(token.encode('utf-8')).hexdigest()

    @property
    def is_pending(self):
        return self.status == self.STATUS_PENDING

    @property
    def is_expired(self):
        return self.expires_at <= timezone.now()


class AuditLogManager(models.Manager):
    """Manager for AuditLog queries."""

    def for_company(self, company_id):
        return self.filter(company_id=company_id)


class AuditLog(BaseModel):
    """Audit trail for access-control changes."""

    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="Company this action belongs to (null for platform-level)"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="User who performed the action (null for system actions)"
    )
    action = models.CharField(max_length=100, db_index=True)
    target_type = models.CharField(max_length=50, db_index=True)
    target_id = models.UUIDField(null=True, blank=True, db_index=True)
    diff = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)
    request_id = models.CharField(max_length=64, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['company', 'created_at'], name='audit_company_created_idx'),
            models.Index(fields=['target_type', 'target_id'], name='audit_target_idx'),
        ]

    def __str__(self):
        return f"{self.user or 'System'} - {self.action}"

    @classmethod
    def log_action(cls, action, user=None, company_id=None, target_type='', target_id=None,
                   diff=None, metadata=None, request=None):
        """
        Create an audit log entry.

        Args:
            action: Action being performed (e.g. 'role_assigned')
            user: User performing the action (None for system actions)
            company_id: Company context (None for platform-level actions)
            target_type: Type of target entity
            target_id: ID of target entity
            diff: Before/after changes
            metadata: Additional context
            request: Django request object (for IP, user agent, request ID)
        """
        if user is not None and not getattr(user, 'is_authenticated', False):
            user = None

        log_data = {
            'action': action,
            'user': user,
            'company_id': company_id,
            'target_type': target_type,
            'target_id': target_id,
            'diff': diff or {},
            'metadata': metadata or {},
        }

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            log_data['request_id'] = getattr(request, 'request_id', '') or ''

        return cls.objects.create(**log_data)

    @staticmethod
    def _get_client_ip(request):
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')
