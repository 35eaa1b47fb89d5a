"""
Core middleware for request processing.
"""
import re
import threading
import uuid
import logging
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from apps.core.sentry_utils import set_user_context

logger = logging.getLogger(__name__)

# Incoming X-Request-ID values outside this shape are replaced with a fresh UUID
REQUEST_ID_PATTERN = re.compile(r'[A-Za-z0-9._:-]{1,64}')


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.
    The request_id is added to the request object and to log records.
    """

    def process_request(self, request):
        """Generate and attach request_id to the request."""
        request_id = request.META.get('HTTP_X_REQUEST_ID', '')
        if not REQUEST_ID_PATTERN.fullmatch(request_id):
            request_id = str(uuid.uuid4())
        request.request_id = request_id

        # Thread-local storage for LoggingFilter
        thread = threading.current_thread()
        thread.request_id = request_id
        thread.user_id = None

    def process_response(self, request, response):
        """Add request_id to response headers."""
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id

        thread = threading.current_thread()
        for attr in ('request_id', 'user_id'):
            if hasattr(thread, attr):
                delattr(thread, attr)
        return response


class JWTAuthenticationMiddleware(MiddlewareMixin):
    """
    Resolve the caller from an ``Authorization: Bearer <token>`` header.

    A missing header leaves the request anonymous so public endpoints keep
    working and the permission gate can answer 401 itself. A header carrying
    an invalid or expired token, or a token for an inactive or deleted user,
    is rejected here with 401.
    """

    API_PREFIX = '/v1/'

    def process_request(self, request):
        auth_header = request.META.get('HTTP_AUTHORIZATION', '')
        if not auth_header.startswith('Bearer '):
            if request.path.startswith(self.API_PREFIX):
                # LOGGING imports this module before the app registry is ready
                from django.contrib.auth.models import AnonymousUser

                # The API is token-only; admin session logins do not carry over
                request.user = AnonymousUser()
            return None

        token = auth_header[len('Bearer '):].strip()

        # Import here to avoid circular dependency
        from apps.rbac.services import AuthService

        user = AuthService.get_user_from_jwt(token)
        if user is None:
            logger.info(
                "Rejected invalid or expired bearer token",
                extra={
                    'request_id': getattr(request, 'request_id', None),
                    'path': request.path,
                }
            )
            return JsonResponse(
                {
                    'success': False,
                    'error': 'Invalid or expired token',
                    'code': 'AUTHENTICATION_FAILED',
                },
                status=401
            )

        request.user = user
        threading.current_thread().user_id = str(user.id)
        set_user_context(user)
        return None


class LoggingFilter(logging.Filter):
    """
    Add request_id and user_id to log records from thread-local storage.
    """

    def filter(self, record):
        thread = threading.current_thread()

        if not hasattr(record, 'request_id') and getattr(thread, 'request_id', None):
            record.request_id = thread.request_id

        if not hasattr(record, 'user_id') and getattr(thread, 'user_id', None):
            record.user_id = thread.user_id

        return True
