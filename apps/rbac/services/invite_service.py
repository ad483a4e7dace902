"""
Invite / onboarding workflow.

Invites are pending grants of roles and offices to an email address.
Nothing is granted until the invitee accepts; acceptance either attaches
an existing identity to the company or creates a new one.
"""
import logging
import secrets
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.companies.models import Company, Office
from apps.core.exceptions import NotFoundError
from apps.core.logging import SecurityLogger
from apps.rbac.exceptions import (
    DuplicateInviteError,
    InvalidInviteStateError,
    InviteConsumedError,
    InviteExpiredError,
    InviteNotFoundError,
    OfficeNotFoundError,
    RoleNotFoundError,
    SeatLimitExceededError,
    ValidationError,
)
from apps.rbac.models import AuditLog, CompanyMembership, Invite, Role, User
from apps.rbac.services.assignment_service import RoleAssignmentService
from apps.rbac.services.membership_service import MembershipService
from apps.rbac.services.office_access_service import OfficeAccessService

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 8

_UNSET = object()


class InviteService:
    """Service for the invite lifecycle: create, resend, validate, accept, revoke."""

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _new_token():
        token = secrets.token_urlsafe(32)
        return token, Invite.hash_token(token)

    @staticmethod
    def _expiry():
        return timezone.now() + timedelta(days=settings.INVITE_EXPIRATION_DAYS)

    @staticmethod
    def _clean_email(email):
        email = User.objects.normalize_email(email)
        try:
            validate_email(email)
        except DjangoValidationError:
            raise ValidationError('Enter a valid email address', field='email')
        return email

    @staticmethod
    def _resolve_roles(role_ids, company_id):
        role_ids = list(dict.fromkeys(str(role_id) for role_id in role_ids or []))
        if not role_ids:
            raise ValidationError('At least one role is required', field='roles')
        roles = list(Role.objects.visible_to(company_id).filter(id__in=role_ids))
        found = {str(role.id) for role in roles}
        for role_id in role_ids:
            if role_id not in found:
                raise RoleNotFoundError(role_id)
        return roles

    @staticmethod
    def _resolve_offices(office_ids, current_office_id, company_id):
        office_ids = list(dict.fromkeys(str(office_id) for office_id in office_ids or []))
        if not office_ids:
            raise ValidationError('At least one office is required', field='allowed_office_ids')
        if current_office_id is None or str(current_office_id) not in office_ids:
            raise ValidationError(
                'Current office must be one of the allowed offices', field='current_office_id'
            )
        offices = list(Office.objects.filter(company_id=company_id, id__in=office_ids))
        found = {str(office.id) for office in offices}
        for office_id in office_ids:
            if office_id not in found:
                raise OfficeNotFoundError(office_id)
        current = next(office for office in offices if str(office.id) == str(current_office_id))
        return offices, current

    @staticmethod
    def _check_seats(company):
        if company.max_seats is None:
            return
        used = (
            CompanyMembership.objects.active().filter(company=company).count()
            + Invite.objects.pending().filter(company=company, expires_at__gt=timezone.now()).count()
        )
        if used >= company.max_seats:
            raise SeatLimitExceededError(company, used)

    @staticmethod
    def _schedule_notification(invite, token):
        from apps.rbac.tasks import send_invite_email

        invite_id = str(invite.id)
        transaction.on_commit(lambda: send_invite_email.delay(invite_id=invite_id, token=token))

    @staticmethod
    def _check_acceptable(invite):
        if invite.status == Invite.STATUS_ACCEPTED:
            raise InviteConsumedError(invite)
        if invite.status != Invite.STATUS_PENDING:
            raise InvalidInviteStateError(invite, 'accept')
        if invite.is_expired:
            raise InviteExpiredError(invite)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @classmethod
    @transaction.atomic
    def create(cls, company_id, email, role_ids, allowed_office_ids, current_office_id,
               invited_by: Optional[User] = None, request=None):
        """
        Create a pending invite.

        Concurrent creates for the same company are serialized on the
        company row; the partial unique index on pending (company, email)
        backs the duplicate check.

        Returns:
            (Invite, raw_token) tuple. The raw token is not stored.

        Raises:
            DuplicateInviteError: a live pending invite exists for the email
            SeatLimitExceededError: the company has no free seats
            ValidationError, RoleNotFoundError, OfficeNotFoundError
        """
        email = cls._clean_email(email)

        company = Company.objects.active().select_for_update().filter(id=company_id).first()
        if company is None:
            raise NotFoundError(company_id, message='Company not found')

        roles = cls._resolve_roles(role_ids, company.id)
        offices, current_office = cls._resolve_offices(allowed_office_ids, current_office_id, company.id)

        existing_user = User.objects.filter(email=email).first()
        if existing_user and CompanyMembership.objects.is_member(existing_user.id, company.id):
            raise ValidationError('User is already a member of this company', field='email')

        pending = Invite.objects.select_for_update().filter(
            company=company, email=email, status=Invite.STATUS_PENDING
        ).first()
        if pending is not None:
            if not pending.is_expired:
                raise DuplicateInviteError(pending.id)
            pending.status = Invite.STATUS_SUPERSEDED
            pending.save(update_fields=['status', 'updated_at'])

        cls._check_seats(company)

        token, token_hash = cls._new_token()
        try:
            with transaction.atomic():
                invite = Invite.objects.create(
                    company=company,
                    email=email,
                    current_office=current_office,
                    token_hash=token_hash,
                    expires_at=cls._expiry(),
                    invited_by=invited_by,
                    is_existing_user_invite=existing_user is not None,
                )
        except IntegrityError:
            winner = Invite.objects.pending().filter(company=company, email=email).first()
            if winner is None:
                raise
            raise DuplicateInviteError(winner.id)

        invite.roles.set(roles)
        invite.allowed_offices.set(offices)

        AuditLog.log_action(
            action='invite_created',
            user=invited_by,
            company_id=company.id,
            target_type='Invite',
            target_id=invite.id,
            diff={
                'role_ids': [str(role.id) for role in roles],
                'allowed_office_ids': [str(office.id) for office in offices],
                'current_office_id': str(current_office.id),
                'is_existing_user_invite': invite.is_existing_user_invite,
            },
            request=request,
        )
        SecurityLogger.log_invite_event('created', invite.id, company.id, email=email,
                                        actor_id=getattr(invited_by, 'id', None))
        cls._schedule_notification(invite, token)
        return invite, token

    @classmethod
    @transaction.atomic
    def update_and_resend(cls, invite_id, company_id, role_ids=None, allowed_office_ids=None,
                          current_office_id=_UNSET, resent_by: Optional[User] = None, request=None):
        """
        Replace a pending invite's roles and offices, issue a new token and
        expiry, and send it again. The invite id does not change.

        Returns:
            (Invite, raw_token) tuple

        Raises:
            InviteNotFoundError
            InvalidInviteStateError: the invite is no longer pending
        """
        invite = Invite.objects.select_for_update().filter(id=invite_id, company_id=company_id).first()
        if invite is None:
            raise InviteNotFoundError(invite_id)
        if not invite.is_pending:
            raise InvalidInviteStateError(invite, 'resend')

        roles = cls._resolve_roles(role_ids, company_id) if role_ids is not None else None

        if allowed_office_ids is None:
            allowed_office_ids = list(invite.allowed_offices.values_list('id', flat=True))
        if current_office_id is _UNSET:
            current_office_id = invite.current_office_id
        offices, current_office = cls._resolve_offices(allowed_office_ids, current_office_id, company_id)

        token, invite.token_hash = cls._new_token()
        invite.expires_at = cls._expiry()
        invite.current_office = current_office
        invite.save(update_fields=['token_hash', 'expires_at', 'current_office', 'updated_at'])

        if roles is not None:
            invite.roles.set(roles)
        invite.allowed_offices.set(offices)

        AuditLog.log_action(
            action='invite_resent',
            user=resent_by,
            company_id=company_id,
            target_type='Invite',
            target_id=invite.id,
            diff={
                'role_ids': [str(role.id) for role in roles] if roles is not None else None,
                'allowed_office_ids': [str(office.id) for office in offices],
                'current_office_id': str(current_office.id),
            },
            request=request,
        )
        SecurityLogger.log_invite_event('resent', invite.id, company_id, email=invite.email,
                                        actor_id=getattr(resent_by, 'id', None))
        cls._schedule_notification(invite, token)
        return invite, token

    @classmethod
    def validate_token(cls, token) -> Invite:
        """
        Look up an invite by its raw token and check it can be accepted.

        Raises:
            InviteNotFoundError, InviteConsumedError, InviteExpiredError,
            InvalidInviteStateError
        """
        invite = Invite.objects.by_token(token or '').select_related('company', 'invited_by').first()
        if invite is None:
            raise InviteNotFoundError(message='Invalid invite token')
        cls._check_acceptable(invite)
        return invite

    @classmethod
    def _resolve_identity(cls, invite, password, first_name, last_name):
        """
        Find or create the identity for an invite.

        Returns:
            (User, created, restored) tuple
        """
        user = User.objects.filter(email=invite.email).first()
        if user is not None:
            return user, False, False

        if not password:
            raise ValidationError('Password is required for new accounts', field='password')
        if len(password) < PASSWORD_MIN_LENGTH:
            raise ValidationError(
                f'Password must be at least {PASSWORD_MIN_LENGTH} characters', field='password'
            )

        user = User.objects_with_deleted.filter(email=invite.email).first()
        if user is not None:
            user.deleted_at = None
            user.is_active = True
            user.first_name = first_name or user.first_name
            user.last_name = last_name or user.last_name
            user.email_verified = True
            user.current_office = None
            user.platform_role = None
            user.set_password(password)
            user.save()
            MembershipService.detach_other_companies(user.id, invite.company_id)
            return user, True, True

        user = User.objects.create_user(
            invite.email,
            password,
            first_name=first_name or '',
            last_name=last_name or '',
            email_verified=True,
        )
        return user, True, False

    @classmethod
    @transaction.atomic
    def accept(cls, token, password=None, first_name=None, last_name=None, request=None) -> User:
        """
        Accept an invite.

        Creates the identity first when the email is new, then the company
        membership, the default and requested roles, the office grants and
        the current office, and marks the invite accepted. All of it
        commits or none of it does.

        A user rejoining through an inactive membership, or a restored
        soft-deleted identity, gets exactly the default and invited roles:
        earlier grants in this company are dropped, and a restored identity
        loses its memberships everywhere else.

        Raises:
            InviteNotFoundError, InviteConsumedError, InviteExpiredError,
            InvalidInviteStateError
            ValidationError: missing or short password for a new identity
        """
        invite = Invite.objects.select_for_update().filter(token_hash=Invite.hash_token(token or '')).first()
        if invite is None:
            raise InviteNotFoundError(message='Invalid invite token')
        cls._check_acceptable(invite)

        user, created_identity, restored = cls._resolve_identity(invite, password, first_name, last_name)
        company_id = invite.company_id
        grantor = invite.invited_by

        membership, joined = CompanyMembership.objects.get_or_create(
            company_id=company_id,
            user=user,
            defaults={'invited_by': grantor},
        )
        if not joined and (restored or not membership.is_active):
            # Rejoining starts from the invite's grants only.
            MembershipService.strip_company_access(user.id, company_id, revoked_by=grantor)
            membership.is_active = True
            membership.invited_by = grantor
            membership.joined_at = timezone.now()
            membership.save(update_fields=['is_active', 'invited_by', 'joined_at', 'updated_at'])

        roles = {role.id: role for role in RoleAssignmentService.default_roles_for(company_id)}
        roles.update((role.id, role) for role in invite.roles.all())
        for role in roles.values():
            RoleAssignmentService.assign(user.id, role.id, company_id, assigned_by=grantor)

        allowed_ids = set()
        for office in invite.allowed_offices.all():
            OfficeAccessService.grant(user.id, office.id, assigned_by=grantor)
            allowed_ids.add(office.id)
        if invite.current_office_id in allowed_ids:
            OfficeAccessService.set_current(user.id, invite.current_office_id, changed_by=grantor)

        invite.status = Invite.STATUS_ACCEPTED
        invite.accepted_at = timezone.now()
        invite.accepted_user = user
        invite.save(update_fields=['status', 'accepted_at', 'accepted_user', 'updated_at'])

        AuditLog.log_action(
            action='invite_accepted',
            user=user,
            company_id=company_id,
            target_type='Invite',
            target_id=invite.id,
            diff={
                'created_identity': created_identity,
                'restored_identity': restored,
                'role_ids': [str(role_id) for role_id in roles],
                'office_ids': [str(office_id) for office_id in allowed_ids],
            },
            request=request,
        )
        SecurityLogger.log_invite_event('accepted', invite.id, company_id, email=invite.email, actor_id=user.id)
        logger.info(
            "Invite accepted",
            extra={
                'invite_id': str(invite.id),
                'company_id': str(company_id),
                'user_id': str(user.id),
                'created_identity': created_identity,
            }
        )
        return user

    @classmethod
    @transaction.atomic
    def revoke(cls, invite_id, company_id, revoked_by: Optional[User] = None, request=None) -> Invite:
        """
        Revoke a pending invite.

        Raises:
            InviteNotFoundError
            InvalidInviteStateError: the invite is already terminal
        """
        invite = Invite.objects.select_for_update().filter(id=invite_id, company_id=company_id).first()
        if invite is None:
            raise InviteNotFoundError(invite_id)
        if not invite.is_pending:
            raise InvalidInviteStateError(invite, 'revoke')

        invite.status = Invite.STATUS_REVOKED
        invite.revoked_at = timezone.now()
        invite.save(update_fields=['status', 'revoked_at', 'updated_at'])

        AuditLog.log_action(
            action='invite_revoked',
            user=revoked_by,
            company_id=company_id,
            target_type='Invite',
            target_id=invite.id,
            request=request,
        )
        SecurityLogger.log_invite_event('revoked', invite.id, company_id, email=invite.email,
                                        actor_id=getattr(revoked_by, 'id', None))
        return invite

    @classmethod
    def list_pending(cls, company_id):
        return (
            Invite.objects.for_company(company_id)
            .filter(status=Invite.STATUS_PENDING)
            .select_related('current_office', 'invited_by')
            .prefetch_related('roles', 'allowed_offices')
            .order_by('-created_at')
        )
