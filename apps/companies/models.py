"""
Company and office models.

A company is the tenant boundary for every role assignment and permission
check. Offices are location units that belong to exactly one company.
"""
from django.db import models
from apps.core.models import BaseModel


class CompanyManager(models.Manager):
    """Manager for company queries."""

    def active(self):
        """Return only active companies."""
        return self.filter(is_active=True)


class Company(BaseModel):
    """
    An isolated customer account.

    Users join a company through a CompanyMembership; their roles and
    permissions are always evaluated within one company at a time.
    """

    name = models.CharField(
        max_length=255,
        help_text="Company name"
    )
    slug = models.SlugField(
        max_length=100,
        unique=True,
        help_text="URL-safe unique identifier"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive companies cannot be accessed"
    )
    max_seats = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Maximum members plus pending invites (null for unlimited)"
    )

    objects = CompanyManager()

    class Meta:
        db_table = 'companies'
        ordering = ['name']
        verbose_name_plural = 'companies'

    def __str__(self):
        return self.name


class OfficeManager(models.Manager):
    """Manager for company-scoped office queries."""

    def for_company(self, company_id):
        return self.filter(company_id=company_id)


class Office(BaseModel):
    """A physical or logical location of a company."""

    company = models.ForeignKey(
        Company,
        on_delete=models.CASCADE,
        related_name='offices',
        help_text="Company this office belongs to"
    )
    name = models.CharField(
        max_length=255,
        help_text="Office name"
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Whether the office is in use"
    )

    objects = OfficeManager()

    class Meta:
        db_table = 'offices'
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(fields=['company', 'name'], name='unique_office_name_per_company'),
        ]
        indexes = [
            models.Index(fields=['company', 'is_active'], name='offices_company_active_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.company.name})"
