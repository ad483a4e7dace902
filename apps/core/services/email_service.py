"""
Platform email service.

Delivery goes through Django's configured EMAIL_BACKEND (SMTP in
production, console in development, locmem under tests).
"""
import logging
from typing import Dict, Any, List, Optional
from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string
from django.utils.html import strip_tags

logger = logging.getLogger(__name__)


class EmailServiceError(Exception):
    """Raised when an email cannot be rendered or delivered."""
    pass


class EmailService:
    """Render and send transactional emails."""

    @classmethod
    def send_email(
        cls,
        to_emails: List[str],
        subject: str,
        template_name: Optional[str] = None,
        template_context: Optional[Dict[str, Any]] = None,
        html_content: Optional[str] = None,
        text_content: Optional[str] = None,
        from_email: Optional[str] = None,
    ) -> bool:
        """
        Send an email rendered from ``emails/<template_name>.html``/``.txt``
        or from raw content.

        Raises:
            EmailServiceError: if rendering or delivery fails
        """
        if template_name:
            html_content, text_content = cls._render_template(template_name, template_context or {})
        elif not html_content and not text_content:
            raise EmailServiceError("Either template_name or content must be provided")

        if html_content and not text_content:
            text_content = strip_tags(html_content)

        message = EmailMultiAlternatives(
            subject=subject,
            body=text_content,
            from_email=from_email or settings.DEFAULT_FROM_EMAIL,
            to=to_emails,
        )
        if html_content:
            message.attach_alternative(html_content, 'text/html')

        try:
            message.send(fail_silently=False)
        except OSError as e:
            logger.error("Failed to send email", extra={'subject': subject, 'error': str(e)})
            raise EmailServiceError(f"Email sending failed: {e}") from e

        logger.info(f"Email sent to {len(to_emails)} recipients", extra={'subject': subject})
        return True

    @classmethod
    def _render_template(cls, template_name: str, context: Dict[str, Any]) -> tuple:
        platform_context = {
            'platform_name': settings.PLATFORM_NAME,
            'platform_url': settings.FRONTEND_URL,
            **context
        }

        try:
            html_content = render_to_string(f'emails/{template_name}.html', platform_context)
        except TemplateDoesNotExist as e:
            raise EmailServiceError(f"Template rendering failed: {e}") from e

        try:
            text_content = render_to_string(f'emails/{template_name}.txt', platform_context)
        except TemplateDoesNotExist:
            text_content = strip_tags(html_content)

        return html_content, text_content
