"""
Office lifecycle operations that touch access control.
"""
import logging
from django.db import transaction

from apps.companies.models import Office
from apps.rbac.exceptions import OfficeNotFoundError
from apps.rbac.models import AuditLog
from apps.rbac.services.office_access_service import OfficeAccessService

logger = logging.getLogger(__name__)


class OfficeService:
    """Service for office mutations."""

    @classmethod
    @transaction.atomic
    def delete_office(cls, office_id, company_id, deleted_by=None, request=None):
        """
        Delete an office of the given company.

        Every OfficeAccess row for the office is removed and every user whose
        current office pointed at it has the pointer cleared, in the same
        transaction as the row deletion.

        Raises:
            OfficeNotFoundError: if the office does not exist in the company
        """
        office = Office.objects.select_for_update().filter(id=office_id, company_id=company_id).first()
        if office is None:
            raise OfficeNotFoundError(office_id)

        purged = OfficeAccessService.purge_office(office.id)
        office_name = office.name
        office.delete()

        AuditLog.log_action(
            action='office_deleted',
            user=deleted_by,
            company_id=company_id,
            target_type='Office',
            target_id=office_id,
            diff={'name': office_name},
            metadata=purged,
            request=request,
        )

        logger.info(
            "Office deleted",
            extra={
                'office_id': str(office_id),
                'company_id': str(company_id),
                'access_rows_removed': purged['access_removed'],
                'current_office_cleared': purged['current_cleared'],
            }
        )
        return purged
