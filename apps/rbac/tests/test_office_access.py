"""
Tests for office grants and the current office pointer.
"""
import uuid

import pytest

from apps.rbac.exceptions import (
    OfficeNotAllowedError,
    OfficeNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from apps.rbac.models import OfficeAccess
from apps.rbac.services import OfficeAccessService


@pytest.mark.django_db
class TestGrant:

    def test_grant_is_idempotent(self, member, office):
        access, created = OfficeAccessService.grant(member.id, office.id)
        again, created_again = OfficeAccessService.grant(member.id, office.id)

        assert created is True
        assert created_again is False
        assert access.id == again.id
        assert OfficeAccess.objects.filter(user=member).count() == 1

    def test_grant_requires_membership_in_office_company(self, member, other_office):
        with pytest.raises(ValidationError) as exc_info:
            OfficeAccessService.grant(member.id, other_office.id)
        assert exc_info.value.field == 'office_id'

    def test_unknown_office(self, member):
        with pytest.raises(OfficeNotFoundError):
            OfficeAccessService.grant(member.id, uuid.uuid4())

    def test_unknown_user(self, office):
        with pytest.raises(UserNotFoundError):
            OfficeAccessService.grant(uuid.uuid4(), office.id)

    def test_allowed_offices_filtered_by_company(self, company, other_company, make_user, office,
                                                 other_office):
        user = make_user('both@example.com', companies=[company, other_company])
        OfficeAccessService.grant(user.id, office.id)
        OfficeAccessService.grant(user.id, other_office.id)

        assert list(OfficeAccessService.allowed_offices(user.id, company.id)) == [office]
        assert set(OfficeAccessService.allowed_offices(user.id)) == {office, other_office}


@pytest.mark.django_db
class TestCurrentOffice:

    def test_set_current_to_allowed_office(self, member, office):
        OfficeAccessService.grant(member.id, office.id)

        user = OfficeAccessService.set_current(member.id, office.id)

        assert user.current_office_id == office.id

    def test_set_current_to_disallowed_office(self, member, office, second_office):
        OfficeAccessService.grant(member.id, office.id)

        with pytest.raises(OfficeNotAllowedError):
            OfficeAccessService.set_current(member.id, second_office.id)

        member.refresh_from_db()
        assert member.current_office_id is None

    def test_clear_current(self, member, office):
        OfficeAccessService.grant(member.id, office.id)
        OfficeAccessService.set_current(member.id, office.id)

        user = OfficeAccessService.set_current(member.id, None)

        assert user.current_office_id is None

    def test_revoke_clears_current_office(self, member, office, second_office):
        OfficeAccessService.grant(member.id, office.id)
        OfficeAccessService.grant(member.id, second_office.id)
        OfficeAccessService.set_current(member.id, office.id)

        assert OfficeAccessService.revoke(member.id, office.id) is True

        member.refresh_from_db()
        assert member.current_office_id is None
        assert not OfficeAccessService.has_access(member.id, office.id)
        assert OfficeAccessService.has_access(member.id, second_office.id)

    def test_revoke_other_office_keeps_current(self, member, office, second_office):
        OfficeAccessService.grant(member.id, office.id)
        OfficeAccessService.grant(member.id, second_office.id)
        OfficeAccessService.set_current(member.id, office.id)

        OfficeAccessService.revoke(member.id, second_office.id)

        member.refresh_from_db()
        assert member.current_office_id == office.id

    def test_revoke_absent_grant_is_noop(self, member, office):
        assert OfficeAccessService.revoke(member.id, office.id) is False
