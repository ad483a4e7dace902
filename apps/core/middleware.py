"""
Core middleware for request processing.
"""
import logging
import threading
import uuid
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)

_context = threading.local()

COMPANY_HEADER = 'HTTP_X_COMPANY_ID'


def get_request_company_id(request):
    """
    Return the company UUID named by the X-COMPANY-ID header, or None.

    The header is the session's active company; it is parsed here and
    nowhere else so every authorization call receives the same value.
    """
    raw = request.META.get(COMPANY_HEADER)
    if not raw:
        return None
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        return None


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.
    The request_id is added to the request object and to log records.
    """

    def process_request(self, request):
        request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())
        request.request_id = request_id
        _context.request_id = request_id

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        _context.__dict__.clear()
        return response


class CompanyContextMiddleware(MiddlewareMixin):
    """
    Attach the active company id (X-COMPANY-ID header) to the request.

    This only records context for logging and views; it grants nothing.
    Authorization is decided per view by HasCompanyPermission.
    """

    def process_request(self, request):
        company_id = get_request_company_id(request)
        request.company_id = company_id
        _context.company_id = str(company_id) if company_id else None


class LoggingFilter(logging.Filter):
    """
    Add request_id and company_id to log records from thread-local storage.
    """

    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = getattr(_context, 'request_id', None)
        if not hasattr(record, 'company_id'):
            record.company_id = getattr(_context, 'company_id', None)
        return True
