"""
Tests for office deletion cascading into access grants.
"""
import uuid

import pytest

from apps.companies.models import Office
from apps.companies.services import OfficeService
from apps.rbac.exceptions import OfficeNotFoundError
from apps.rbac.models import AuditLog, OfficeAccess
from apps.rbac.services import OfficeAccessService


@pytest.mark.django_db
class TestDeleteOffice:

    def test_delete_purges_grants_and_current_pointers(self, company, make_user, office, second_office):
        alice = make_user('alice@acme.test', companies=[company])
        bob = make_user('bob@acme.test', companies=[company])
        for user in (alice, bob):
            OfficeAccessService.grant(user.id, office.id)
            OfficeAccessService.grant(user.id, second_office.id)
        OfficeAccessService.set_current(alice.id, office.id)
        OfficeAccessService.set_current(bob.id, second_office.id)

        result = OfficeService.delete_office(office.id, company.id)

        assert result == {'access_removed': 2, 'current_cleared': 1}
        assert not Office.objects.filter(id=office.id).exists()
        assert not OfficeAccess.objects.filter(office_id=office.id).exists()
        alice.refresh_from_db()
        bob.refresh_from_db()
        assert alice.current_office_id is None
        assert bob.current_office_id == second_office.id
        assert AuditLog.objects.for_company(company.id).filter(action='office_deleted', target_id=office.id).exists()

    def test_other_company_office_is_not_found(self, company, other_office):
        with pytest.raises(OfficeNotFoundError):
            OfficeService.delete_office(other_office.id, company.id)
        assert Office.objects.filter(id=other_office.id).exists()

    def test_unknown_office(self, company):
        with pytest.raises(OfficeNotFoundError):
            OfficeService.delete_office(uuid.uuid4(), company.id)
