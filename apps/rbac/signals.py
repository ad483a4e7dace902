"""
RBAC signals keeping cached effective permissions in step with membership.

Role and assignment changes invalidate through the services; these
receivers cover membership rows, which admin screens and the ORM can
change directly.
"""
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver


@receiver(post_save, sender='rbac.CompanyMembership')
def invalidate_permissions_on_membership_change(sender, instance, created, **kwargs):
    """Deactivating or reactivating a member drops their cached permissions."""
    if created:
        return

    from apps.rbac.services.assignment_service import RoleAssignmentService
    RoleAssignmentService.invalidate(instance.user_id, instance.company_id)


@receiver(post_delete, sender='rbac.CompanyMembership')
def invalidate_permissions_on_membership_delete(sender, instance, **kwargs):
    from apps.rbac.services.assignment_service import RoleAssignmentService
    RoleAssignmentService.invalidate(instance.user_id, instance.company_id)
