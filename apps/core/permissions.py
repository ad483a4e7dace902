"""
DRF permission classes and decorators for company-scoped authorization.

This module provides:
- HasCompanyPermission: DRF permission class that calls the authorization guard
- HasPlatformPermission: the same for platform-operator endpoints
- @requires_permissions: class decorator declaring permissions per HTTP method
"""
import logging

from django.core.exceptions import ImproperlyConfigured
from rest_framework.permissions import BasePermission

from apps.core.exceptions import PermissionDeniedError, ValidationError
from apps.core.middleware import get_request_company_id
from apps.core.sentry_utils import set_user_context
from apps.rbac import permissions as perms

logger = logging.getLogger(__name__)


def _company_id_or_deny(request):
    company_id = get_request_company_id(request)
    if company_id is None:
        raise PermissionDeniedError(
            'X-COMPANY-ID header with a valid company id is required',
            {'reason': 'no_company'},
        )
    return company_id


class HasCompanyPermission(BasePermission):
    """
    Enforce ``view.required_permissions`` for the request's HTTP method.

    ``required_permissions`` maps a method name to a tuple of permission
    strings; ``permission_mode`` maps it to 'all' or 'any' (default 'all').
    Methods absent from the mapping only need company membership.

    Usage:
        @requires_permissions('role:read', methods=['GET'])
        @requires_permissions('role:create', methods=['POST'])
        class RoleListView(APIView):
            permission_classes = [HasCompanyPermission]
    """

    def has_permission(self, request, view):
        from apps.rbac.services.authorization import AuthorizationGuard

        user = getattr(request, 'user', None)
        if not user or not user.is_authenticated:
            return False

        company_id = _company_id_or_deny(request)
        required = getattr(view, 'required_permissions', {}).get(request.method, ())
        mode = getattr(view, 'permission_mode', {}).get(request.method, 'all')

        AuthorizationGuard.require(
            user.id,
            company_id,
            required,
            mode=mode,
            ip_address=request.META.get('REMOTE_ADDR'),
        )
        set_user_context(user, company_id)

        logger.debug(
            "Permission granted",
            extra={
                'required_permissions': list(required),
                'view': view.__class__.__name__,
                'method': request.method,
            }
        )
        return True


class HasPlatformPermission(BasePermission):
    """
    Enforce ``view.required_permissions`` against the actor's platform role.

    Company roles never satisfy these checks, and no company header is read.
    """

    def has_permission(self, request, view):
        from apps.rbac.services.authorization import AuthorizationGuard

        user = getattr(request, 'user', None)
        if not user or not user.is_authenticated:
            return False

        required = getattr(view, 'required_permissions', {}).get(request.method, ())
        mode = getattr(view, 'permission_mode', {}).get(request.method, 'all')

        AuthorizationGuard.require_platform(
            user.id,
            required,
            mode=mode,
            ip_address=request.META.get('REMOTE_ADDR'),
        )
        set_user_context(user)
        return True


def requires_permissions(*permission_codes, methods=None, mode='all'):
    """
    Class decorator declaring the permissions a view's methods need.

    Stack one decorator per method group. ``methods`` defaults to every
    HTTP method the view implements. Codes are parsed when the class is
    decorated, so a misspelt permission fails at import.
    """
    try:
        codes = tuple(perms.parse_permission(code) for code in permission_codes)
    except ValidationError as exc:
        raise ImproperlyConfigured(f"requires_permissions: {exc.message}") from exc

    def decorator(view_class):
        required = dict(getattr(view_class, 'required_permissions', {}))
        modes = dict(getattr(view_class, 'permission_mode', {}))
        targets = methods or [
            name.upper() for name in view_class.http_method_names
            if name != 'options' and hasattr(view_class, name)
        ]
        for method in targets:
            required[method.upper()] = codes
            modes[method.upper()] = mode
        view_class.required_permissions = required
        view_class.permission_mode = modes
        return view_class

    return decorator
