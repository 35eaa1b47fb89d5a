"""
Custom exception handlers and exception hierarchy for DRF.

Every error leaving the API uses the response envelope:

    {"success": false, "error": "<message>", ...}
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from rest_framework import exceptions as drf_exceptions
from django_ratelimit.exceptions import Ratelimited
from django.http import JsonResponse

logger = logging.getLogger(__name__)


class TaskGuardException(Exception):
    """Base exception for TaskGuard-specific errors."""

    status_code = 400
    default_code = 'ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_payload(self):
        """Render the exception into the response envelope."""
        payload = {
            'success': False,
            'error': self.message,
            'code': self.default_code,
        }
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(TaskGuardException):
    """Raised when input validation fails."""
    status_code = 400
    default_code = 'VALIDATION_ERROR'


class AuthenticationError(TaskGuardException):
    """Raised when authentication fails."""
    status_code = 401
    default_code = 'AUTHENTICATION_FAILED'


class AuthorizationError(TaskGuardException):
    """Raised when an authenticated user lacks the required permission."""
    status_code = 403
    default_code = 'PERMISSION_DENIED'

    def __init__(self, message, permission=None, details=None):
        self.permission = permission
        super().__init__(message, details)

    def to_payload(self):
        payload = super().to_payload()
        if self.permission:
            payload['permission'] = self.permission
        return payload


class ProtectedResourceError(TaskGuardException):
    """Raised when a system-defined role or permission would be mutated."""
    status_code = 403
    default_code = 'PROTECTED_RESOURCE'


class NotFoundError(TaskGuardException):
    """Raised when a referenced entity does not exist."""
    status_code = 404
    default_code = 'NOT_FOUND'


class ConflictError(TaskGuardException):
    """Raised when an operation would violate a data invariant."""
    status_code = 400
    default_code = 'CONFLICT'


class UnknownPermissionError(TaskGuardException):
    """Raised when a route requires a permission missing from the registry."""
    status_code = 400
    default_code = 'UNKNOWN_PERMISSION'


class InternalError(TaskGuardException):
    """Raised when an unexpected storage or runtime failure occurs."""
    status_code = 500
    default_code = 'INTERNAL_ERROR'


def _client_ip(request):
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', 'unknown')


def _retry_after(path):
    """Seconds a client should wait after being throttled on a path."""
    if path and '/auth/register' in path:
        return 3600
    return 60


def ratelimit_view(request, exception):
    """
    Custom view for django-ratelimit to return 429 instead of 403.

    Returns 429 with Retry-After header indicating when to retry.
    """
    from apps.core.logging import SecurityLogger

    ip_address = _client_ip(request)
    retry_after = _retry_after(request.path)

    SecurityLogger.log_rate_limit_exceeded(
        endpoint=request.path,
        ip_address=ip_address,
        limit='Rate limit exceeded'
    )

    response = JsonResponse(
        {
            'success': False,
            'error': 'Rate limit exceeded. Please try again later.',
            'code': 'RATE_LIMIT_EXCEEDED',
            'retry_after': retry_after,
        },
        status=429
    )
    response['Retry-After'] = str(retry_after)
    return response


def _drf_error_message(exc, data):
    """Flatten a DRF exception body into a single error string."""
    if isinstance(data, dict) and 'detail' in data:
        return str(data['detail'])
    if isinstance(exc, drf_exceptions.ValidationError):
        return 'Validation error'
    return str(exc)


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns the response envelope.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None
    log_extra = {
        'exception': str(exc),
        'request_id': request_id,
        'path': request.path if request else None,
        'method': request.method if request else None,
    }

    if isinstance(exc, Ratelimited):
        from apps.core.logging import SecurityLogger

        retry_after = _retry_after(request.path if request else None)
        SecurityLogger.log_rate_limit_exceeded(
            endpoint=request.path if request else 'unknown',
            ip_address=_client_ip(request) if request else 'unknown',
            limit='Rate limit exceeded'
        )
        response = Response(
            {
                'success': False,
                'error': 'Rate limit exceeded. Please try again later.',
                'code': 'RATE_LIMIT_EXCEEDED',
                'request_id': request_id,
                'retry_after': retry_after,
            },
            status=status.HTTP_429_TOO_MANY_REQUESTS
        )
        response['Retry-After'] = str(retry_after)
        return response

    if isinstance(exc, TaskGuardException):
        if exc.status_code >= 500:
            logger.error(
                f"API Exception: {exc.__class__.__name__}",
                extra=log_extra,
                exc_info=True
            )
            payload = {
                'success': False,
                'error': 'Internal server error',
                'code': exc.default_code,
            }
        else:
            logger.info(
                f"API Exception: {exc.__class__.__name__}: {exc.message}",
                extra=log_extra
            )
            payload = exc.to_payload()
        if request_id:
            payload['request_id'] = request_id
        return Response(payload, status=exc.status_code)

    # Call DRF's default exception handler for its own exception types
    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"API Exception: {exc.__class__.__name__}",
            extra=log_extra,
            exc_info=True
        )
        from apps.core.sentry_utils import capture_exception
        capture_exception(exc, request={'path': log_extra['path'], 'request_id': request_id})

        return Response(
            {
                'success': False,
                'error': 'Internal server error',
                'code': 'INTERNAL_ERROR',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    logger.warning(
        f"API Exception: {exc.__class__.__name__}",
        extra=log_extra
    )

    payload = {
        'success': False,
        'error': _drf_error_message(exc, response.data),
    }
    if isinstance(exc, drf_exceptions.ValidationError):
        payload['details'] = response.data
    if request_id:
        payload['request_id'] = request_id
    response.data = payload

    return response
