"""
Custom logging formatters for structured JSON logging.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask sensitive PII data in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    SECRET_PATTERN = re.compile(r'(token|secret|password)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE)

    # Field names whose values are never logged
    SENSITIVE_FIELDS = {
        'password', 'password_hash', 'passwd',
        'token', 'token_hash', 'invite_token', 'access_token', 'refresh_token',
        'secret', 'secret_key',
    }

    # Field names whose values are partially masked
    PARTIAL_FIELDS = {'email', 'user_email', 'email_address'}

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            masked_username = username[0] + '*' * (len(username) - 1) if len(username) > 1 else username
            return f"{masked_username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        """Mask tokens, passwords and secrets in text."""
        if not isinstance(text, str):
            return text
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        return cls.mask_secrets(cls.mask_email(text))

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            lowered = key.lower()
            if lowered in cls.SENSITIVE_FIELDS:
                masked[key] = '********' if value else value
            elif lowered in cls.PARTIAL_FIELDS:
                masked[key] = cls.mask_email(value)
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict)
                    else cls.mask_text(item) if isinstance(item, str)
                    else item
                    for item in value
                ]
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value

        return masked


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id and company_id from extra fields if available.
    Automatically masks sensitive PII data.
    """

    RESERVED = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
        'pathname', 'process', 'processName', 'relativeCreated',
        'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
        'taskName', 'request_id', 'company_id', 'task_id', 'task_name',
    }

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for attr in ('request_id', 'company_id', 'task_id', 'task_name'):
            value = getattr(record, attr, None)
            if value is not None:
                log_data[attr] = str(value)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        extras = {
            key: value for key, value in record.__dict__.items()
            if key not in self.RESERVED and not key.startswith('_')
        }
        for key, value in PIIMasker.mask_dict(extras).items():
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SanitizingFormatter(logging.Formatter):
    """Plain-text formatter that masks PII in the rendered line."""

    def format(self, record):
        return PIIMasker.mask_text(super().format(record))


class SecurityLogger:
    """
    Centralized security event logging.

    Every event is written to the ``security`` logger with structured,
    PII-masked context. Critical events are also sent to Sentry.
    """

    CRITICAL_EVENTS = {
        'cross_company_role_attempt',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Example:
            >>> SecurityLogger.log_event(
            ...     'permission_denied',
            ...     actor_id='123',
            ...     company_id='456',
            ... )
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'event_at': timezone.now().isoformat(),
        }
        log_data.update({key: value for key, value in context.items() if value is not None})
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
            )

    @staticmethod
    def log_permission_denied(actor_id, company_id, required, missing, reason=None, ip_address=None):
        """Log an authorization denial produced by the guard."""
        SecurityLogger.log_event(
            'permission_denied',
            level='warning',
            actor_id=str(actor_id) if actor_id else None,
            company_id=str(company_id) if company_id else None,
            required_permissions=list(required),
            missing_permissions=list(missing),
            reason=reason,
            ip_address=ip_address,
        )

    @staticmethod
    def log_cross_company_attempt(actor_id, company_id, role_id, role_company_id):
        """Log an attempt to assign a role owned by another company."""
        SecurityLogger.log_event(
            'cross_company_role_attempt',
            level='error',
            actor_id=str(actor_id) if actor_id else None,
            company_id=str(company_id),
            role_id=str(role_id),
            role_company_id=str(role_company_id) if role_company_id else None,
        )

    @staticmethod
    def log_invite_event(event, invite_id, company_id, email=None, actor_id=None):
        """Log an invite lifecycle transition (created, resent, accepted, revoked)."""
        SecurityLogger.log_event(
            f'invite_{event}',
            level='info',
            invite_id=str(invite_id),
            company_id=str(company_id),
            email=email,
            actor_id=str(actor_id) if actor_id else None,
        )

    @staticmethod
    def log_rate_limit_exceeded(endpoint: str, ip_address: str, company_id=None):
        """Log a rate limit violation."""
        SecurityLogger.log_event(
            'rate_limit_exceeded',
            level='warning',
            endpoint=endpoint,
            ip_address=ip_address,
            company_id=str(company_id) if company_id else None,
        )
