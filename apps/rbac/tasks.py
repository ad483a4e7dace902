"""
Celery tasks for the RBAC app.
"""
import logging
from urllib.parse import urlencode

from celery import shared_task
from django.conf import settings

from apps.core.services.email_service import EmailService, EmailServiceError
from apps.core.tasks import LoggedTask
from apps.rbac.models import Invite

logger = logging.getLogger(__name__)


def build_accept_url(token):
    return f"{settings.FRONTEND_URL.rstrip('/')}/invite/accept?{urlencode({'token': token})}"


@shared_task(bind=True, base=LoggedTask, max_retries=3, default_retry_delay=60)
def send_invite_email(self, invite_id, token):
    """
    Deliver an invite link to the invitee.

    Skips invites that stopped being pending before the task ran (revoked,
    or resent with a newer token).
    """
    invite = Invite.objects.select_related('company', 'invited_by').filter(id=invite_id).first()
    if invite is None or not invite.is_pending or invite.token_hash != Invite.hash_token(token):
        logger.info("Invite email skipped", extra={'invite_id': invite_id})
        return {'sent': False}

    context = {
        'company_name': invite.company.name,
        'inviter_name': invite.invited_by.get_full_name() if invite.invited_by else None,
        'accept_url': build_accept_url(token),
        'expires_at': invite.expires_at,
        'is_existing_user_invite': invite.is_existing_user_invite,
    }
    try:
        EmailService.send_email(
            to_emails=[invite.email],
            subject=f"You're invited to join {invite.company.name}",
            template_name='invite',
            template_context=context,
        )
    except EmailServiceError as exc:
        raise self.retry(exc=exc)

    return {'sent': True}
