"""
DRF permission classes and decorators for RBAC permission enforcement.

This module provides:
- HasPermission: DRF permission class that enforces a required permission name
- @requires_permission: Decorator to declare the required permission on views
"""
import logging
from rest_framework.permissions import BasePermission

logger = logging.getLogger(__name__)


def get_required_permission(view, request):
    """
    Return the permission name a request needs, or None.

    A permission declared on the handler method wins over one declared on
    the view class.
    """
    handler = getattr(view, request.method.lower(), None)
    required = getattr(handler, 'required_permission', None)
    if required:
        return required
    return getattr(view, 'required_permission', None)


class HasPermission(BasePermission):
    """
    DRF permission class that enforces a named permission on API endpoints.

    The request moves from unauthenticated to authenticated (a user was
    resolved from the bearer token) and then to permitted or denied:

    1. No authenticated user: 401
    2. Required permission missing from the registry: 400
    3. User's roles do not grant the permission: 403, written to the audit
       log synchronously before the response is returned
    4. Unexpected failure while resolving: 500 with a generic message
    5. Granted: the permission name is attached to the request

    Usage in views:
        @requires_permission('tasks:delete')
        class TaskDeleteView(APIView):
            permission_classes = [HasPermission]

    Or on individual methods:
        class TaskListView(APIView):
            permission_classes = [HasPermission]

            @requires_permission('tasks:read')
            def get(self, request):
                pass
    """

    def has_permission(self, request, view):
        # DRF loads this class while apps.core.exceptions imports rest_framework.views
        from apps.core.exceptions import (
            TaskGuardException,
            AuthenticationError,
            AuthorizationError,
            UnknownPermissionError,
            InternalError,
        )

        required = get_required_permission(view, request)

        if not required:
            return True

        user = getattr(request, 'user', None)
        if user is None or not user.is_authenticated:
            raise AuthenticationError('Authentication required')

        from apps.rbac.models import Permission
        from apps.rbac.services import PermissionResolver

        try:
            if not Permission.objects.filter(name=required.lower()).exists():
                logger.error(
                    f"Route requires unknown permission '{required}'",
                    extra={
                        'permission': required,
                        'view': view.__class__.__name__,
                        'method': request.method,
                        'path': request.path,
                    }
                )
                raise UnknownPermissionError(f"Permission '{required}' does not exist")

            allowed = PermissionResolver.has_permission(user, required)
        except TaskGuardException:
            raise
        except Exception as exc:
            logger.error(
                f"Permission check failed for '{required}'",
                extra={
                    'permission': required,
                    'user_id': str(user.id),
                    'view': view.__class__.__name__,
                    'path': request.path,
                },
                exc_info=True
            )
            from apps.core.sentry_utils import capture_exception
            capture_exception(exc, permission_check={'permission': required, 'path': request.path})
            raise InternalError('Error checking permissions') from exc

        django_request = request._request

        if not allowed:
            self._record_denial(request, user, required)
            raise AuthorizationError(
                "You do not have permission to perform this action",
                permission=required
            )

        django_request.permission = required

        logger.debug(
            f"Permission granted: {required}",
            extra={
                'permission': required,
                'user_id': str(user.id),
                'view': view.__class__.__name__,
            }
        )

        return True

    def _record_denial(self, request, user, required):
        """Write the denied attempt to the audit log and the security log."""
        from apps.audit.recorder import build_draft, record_now
        from apps.core.logging import SecurityLogger

        django_request = request._request
        draft = getattr(django_request, 'audit_draft', None) or build_draft(django_request, user=user)
        draft.finalize(
            status_code=403,
            error_message=f"Permission denied: missing '{required}'"
        )
        record_now(draft)
        django_request.audit_recorded = True

        SecurityLogger.log_permission_denied(
            user=user,
            permission=required,
            ip_address=draft.ip_address,
            path=request.path,
        )

        logger.warning(
            f"Permission denied: user {user.id} missing '{required}'",
            extra={
                'user_id': str(user.id),
                'permission': required,
                'method': request.method,
                'path': request.path,
                'request_id': getattr(django_request, 'request_id', None),
            }
        )


def requires_permission(permission):
    """
    Decorator to declare the required permission on view classes or methods.

    This decorator sets the required_permission attribute, which is then
    checked by the HasPermission permission class before the handler runs.

    Usage:
        @requires_permission('roles:read')
        class RoleListView(APIView):
            permission_classes = [HasPermission]

    Or on individual methods:
        class RoleListView(APIView):
            permission_classes = [HasPermission]

            @requires_permission('roles:read')
            def get(self, request):
                pass

            @requires_permission('roles:manage')
            def post(self, request):
                pass

    Args:
        permission: Permission name in ``category:action`` form

    Returns:
        Decorator function that sets required_permission attribute
    """
    def decorator(view_or_method):
        view_or_method.required_permission = permission
        return view_or_method

    return decorator
