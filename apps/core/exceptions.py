"""
Domain exception base classes and the DRF exception handler.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django_ratelimit.exceptions import Ratelimited
from django.http import JsonResponse

logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY_AFTER = 60


def _client_ip(request):
    return request.META.get('REMOTE_ADDR', 'unknown') if request else 'unknown'


def ratelimit_view(request, exception):
    """
    View for django-ratelimit that returns 429 instead of 403.

    Called when a rate limit is exceeded with block=True on a plain Django
    view; DRF views go through custom_exception_handler instead.
    """
    from apps.core.logging import SecurityLogger

    SecurityLogger.log_rate_limit_exceeded(
        endpoint=request.path,
        ip_address=_client_ip(request),
        company_id=getattr(request, 'company_id', None),
    )

    response = JsonResponse(
        {
            'error': {
                'code': 'RATE_LIMIT_EXCEEDED',
                'message': 'Rate limit exceeded. Please try again later.',
                'details': {'retry_after': RATE_LIMIT_RETRY_AFTER},
            }
        },
        status=429
    )
    response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
    return response


def custom_exception_handler(exc, context):
    """
    Render domain errors, DRF errors and unexpected failures in one envelope:
    {"error": {"code", "message", "details"}, "request_id"}.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, Ratelimited):
        from apps.core.logging import SecurityLogger

        SecurityLogger.log_rate_limit_exceeded(
            endpoint=request.path if request else 'unknown',
            ip_address=_client_ip(request),
            company_id=getattr(request, 'company_id', None) if request else None,
        )
        response = Response(
            {
                'error': {
                    'code': 'RATE_LIMIT_EXCEEDED',
                    'message': 'Rate limit exceeded. Please try again later.',
                    'details': {'retry_after': RATE_LIMIT_RETRY_AFTER},
                },
                'request_id': request_id,
            },
            status=status.HTTP_429_TOO_MANY_REQUESTS
        )
        response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
        return response

    if isinstance(exc, AdminError):
        logger.info(
            f"Domain error: {exc.code}",
            extra={
                'error_code': exc.code,
                'details': exc.details,
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            }
        )
        return Response(
            {
                'error': exc.to_dict(),
                'request_id': request_id,
            },
            status=exc.status_code
        )

    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'exception': str(exc),
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            },
            exc_info=True
        )
        from apps.core.sentry_utils import capture_exception
        capture_exception(exc, context={'request_id': request_id})
        return Response(
            {
                'error': {
                    'code': 'INTERNAL_ERROR',
                    'message': 'An unexpected error occurred',
                    'details': {},
                },
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    logger.warning(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'status_code': response.status_code,
            'request_id': request_id,
            'path': request.path if request else None,
        }
    )

    code = getattr(exc, 'default_code', 'error')
    if isinstance(response.data, dict) and set(response.data) == {'detail'}:
        message = str(response.data['detail'])
        details = {}
    else:
        message = 'Invalid request'
        details = response.data
    response.data = {
        'error': {
            'code': str(code).upper(),
            'message': message,
            'details': details,
        },
        'request_id': request_id,
    }
    return response


class AdminError(Exception):
    """Base exception for expected domain errors."""

    status_code = 400
    code = 'ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        return {
            'code': self.code,
            'message': self.message,
            'details': self.details,
        }


class ValidationError(AdminError):
    """Raised when input validation fails."""
    status_code = 400
    code = 'VALIDATION_ERROR'

    def __init__(self, message, field=None, details=None):
        details = dict(details or {})
        if field:
            details.setdefault('field', field)
        self.field = field
        super().__init__(message, details)


class NotFoundError(AdminError):
    """Raised for a dangling reference to a user, role, office or invite."""
    status_code = 404
    code = 'NOT_FOUND'

    resource = 'Resource'

    def __init__(self, identifier=None, message=None, details=None):
        details = dict(details or {})
        if identifier is not None:
            details.setdefault('id', str(identifier))
        details.setdefault('resource', self.resource)
        super().__init__(message or f"{self.resource} not found", details)


class PermissionDeniedError(AdminError):
    """Raised when the actor lacks required permissions."""
    status_code = 403
    code = 'PERMISSION_DENIED'


class ConflictError(AdminError):
    """Raised when a request conflicts with current state."""
    status_code = 409
    code = 'CONFLICT'
