"""
Domain errors raised by the access-control core.

All of them are expected outcomes surfaced to the caller with a stable
``code`` and structured ``details``; the DRF exception handler renders them.
"""
from apps.core.exceptions import (
    AdminError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

__all__ = [
    'AdminError',
    'ConflictError',
    'NotFoundError',
    'PermissionDeniedError',
    'ValidationError',
    'RoleNotFoundError',
    'UserNotFoundError',
    'OfficeNotFoundError',
    'InviteNotFoundError',
    'ImmutableRoleError',
    'RoleInUseError',
    'CrossCompanyRoleError',
    'OfficeNotAllowedError',
    'DuplicateInviteError',
    'InviteExpiredError',
    'InviteConsumedError',
    'InvalidInviteStateError',
    'SeatLimitExceededError',
    'SelfLockoutError',
]


class RoleNotFoundError(NotFoundError):
    code = 'ROLE_NOT_FOUND'
    resource = 'Role'


class UserNotFoundError(NotFoundError):
    code = 'USER_NOT_FOUND'
    resource = 'User'


class OfficeNotFoundError(NotFoundError):
    code = 'OFFICE_NOT_FOUND'
    resource = 'Office'


class InviteNotFoundError(NotFoundError):
    code = 'INVITE_NOT_FOUND'
    resource = 'Invite'


class ImmutableRoleError(AdminError):
    """Raised on an attempt to change or delete a system or platform role."""
    status_code = 403
    code = 'IMMUTABLE_ROLE'

    def __init__(self, role):
        super().__init__(
            f"{role.get_type_display()} role '{role.name}' cannot be modified",
            {'role_id': str(role.id), 'role_type': role.type},
        )


class RoleInUseError(ConflictError):
    """Raised when deleting a role that still has assignments without force."""
    code = 'ROLE_IN_USE'

    def __init__(self, role, assignment_count):
        self.assignment_count = assignment_count
        super().__init__(
            f"Role '{role.name}' is assigned to {assignment_count} user(s)",
            {'role_id': str(role.id), 'assignment_count': assignment_count},
        )


class CrossCompanyRoleError(AdminError):
    """Raised when a role is assigned outside the company that owns it."""
    status_code = 403
    code = 'CROSS_COMPANY_ROLE'

    def __init__(self, role, company_id):
        super().__init__(
            "Role cannot be assigned in this company",
            {
                'role_id': str(role.id),
                'role_type': role.type,
                'company_id': str(company_id),
            },
        )


class OfficeNotAllowedError(AdminError):
    """Raised when setting a current office the user has no access to."""
    status_code = 400
    code = 'OFFICE_NOT_ALLOWED'

    def __init__(self, user_id, office_id):
        super().__init__(
            "User does not have access to this office",
            {'user_id': str(user_id), 'office_id': str(office_id)},
        )


class DuplicateInviteError(ConflictError):
    """
    Raised when a pending invite already exists for the email in the company.

    ``existing_invite_id`` lets the caller switch to update-and-resend.
    """
    code = 'DUPLICATE_INVITE'

    def __init__(self, existing_invite_id):
        self.existing_invite_id = existing_invite_id
        super().__init__(
            "A pending invite already exists for this email",
            {'existing_invite_id': str(existing_invite_id)},
        )


class InviteExpiredError(AdminError):
    status_code = 410
    code = 'INVITE_EXPIRED'

    def __init__(self, invite):
        super().__init__(
            "Invite has expired",
            {'invite_id': str(invite.id), 'expired_at': invite.expires_at.isoformat()},
        )


class InviteConsumedError(ConflictError):
    code = 'INVITE_CONSUMED'

    def __init__(self, invite):
        super().__init__("Invite has already been accepted", {'invite_id': str(invite.id)})


class InvalidInviteStateError(ConflictError):
    """Raised when an operation needs a pending invite but it is terminal."""
    code = 'INVALID_INVITE_STATE'

    def __init__(self, invite, operation):
        super().__init__(
            f"Cannot {operation} an invite that is {invite.status}",
            {'invite_id': str(invite.id), 'status': invite.status},
        )


class SeatLimitExceededError(ConflictError):
    code = 'SEAT_LIMIT_EXCEEDED'

    def __init__(self, company, used):
        super().__init__(
            "Company has reached its seat limit",
            {'max_seats': company.max_seats, 'used_seats': used},
        )


class SelfLockoutError(AdminError):
    """Raised when an actor tries to remove their own access."""
    status_code = 400
    code = 'SELF_LOCKOUT'

    def __init__(self, message, user_id):
        super().__init__(message, {'user_id': str(user_id)})
