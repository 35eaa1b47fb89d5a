"""
Audit middleware.

Opens an audit draft for every authenticated request and, once the view
has produced its response, finalizes the draft and dispatches it for
persistence. Requests whose outcome was already written (authorization
denials) are skipped so each request yields exactly one entry.
"""
import logging
from django.utils.deprecation import MiddlewareMixin

from apps.audit import recorder

logger = logging.getLogger(__name__)


class AuditMiddleware(MiddlewareMixin):
    """
    Must run after JWTAuthenticationMiddleware so request.user is resolved.
    """

    def process_request(self, request):
        user = getattr(request, 'user', None)
        if user is None or not user.is_authenticated:
            return None

        try:
            request.audit_draft = recorder.build_draft(request, user=user)
        except Exception:
            logger.error("Failed to open audit draft", exc_info=True)
        return None

    def process_view(self, request, view_func, view_args, view_kwargs):
        draft = getattr(request, 'audit_draft', None)
        if draft is None:
            return None

        override = recorder.get_action_override(view_func, request.method)
        if override:
            draft.action = override
        return None

    def process_response(self, request, response):
        draft = getattr(request, 'audit_draft', None)
        if draft is None or getattr(request, 'audit_recorded', False):
            return response

        try:
            recorder.finalize_draft(request, response)
        except Exception:
            logger.error(
                "Failed to finalize audit draft",
                extra={'action': draft.action, 'path': request.path},
                exc_info=True
            )
            return response

        request.audit_recorded = True
        recorder.dispatch(draft)
        return response
