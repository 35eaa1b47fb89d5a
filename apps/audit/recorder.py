"""
Audit recording for API requests.

A draft entry is opened as soon as the caller is authenticated, carried on
the request, finalized from the response status and body, and handed to a
Celery task for persistence. Persistence failures are logged and never
change the response the caller receives.

Views can refine what gets recorded:

    @audit_action('roles:create')       # override the inferred action label
    capture_snapshot(request, before)   # pre-update values for the diff
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_ipv46_address
from django.db import transaction
from django.utils import timezone

from apps.audit.models import AuditLogEntry, AuditStatus, ResourceType

logger = logging.getLogger(__name__)

# Checked in order against the lowercased request path
RESOURCE_PATTERNS = [
    ('/tasks', ResourceType.TASK, 'tasks'),
    ('/users', ResourceType.USER, 'users'),
    ('/roles', ResourceType.ROLE, 'roles'),
    ('/permissions', ResourceType.PERMISSION, 'permissions'),
    ('/audit', ResourceType.AUDIT, 'audit'),
    ('/reports', ResourceType.REPORT, 'reports'),
    ('/system', ResourceType.SYSTEM, 'system'),
    ('/health', ResourceType.SYSTEM, 'system'),
]

METHOD_VERBS = {
    'GET': 'read',
    'HEAD': 'read',
    'POST': 'create',
    'PUT': 'update',
    'PATCH': 'update',
    'DELETE': 'delete',
}

UPDATE_METHODS = {'PUT', 'PATCH'}


def classify_resource(path):
    """
    Map a request path to its resource type and action category.

    Returns:
        Tuple of (resource_type, category), e.g. ('role', 'roles')
    """
    path = (path or '').lower()
    for fragment, resource_type, category in RESOURCE_PATTERNS:
        if fragment in path:
            return resource_type.value, category
    return ResourceType.OTHER.value, 'other'


def infer_action(method, path):
    """Build the default action label, e.g. 'tasks:update' for PUT /v1/tasks/<id>/."""
    _, category = classify_resource(path)
    verb = METHOD_VERBS.get(method.upper(), method.lower())
    return f"{category}:{verb}"


def _valid_ip(value):
    value = (value or '').strip()
    if not value:
        return None
    try:
        validate_ipv46_address(value)
    except DjangoValidationError:
        return None
    return value


def get_client_ip(request):
    """
    Client IP from X-Forwarded-For, then X-Real-IP, then REMOTE_ADDR.

    Header values that are not IPv4 or IPv6 addresses are skipped.
    """
    candidates = (
        request.META.get('HTTP_X_FORWARDED_FOR', '').split(',')[0],
        request.META.get('HTTP_X_REAL_IP'),
        request.META.get('REMOTE_ADDR'),
    )
    for candidate in candidates:
        ip = _valid_ip(candidate)
        if ip:
            return ip
    return None


def _clip(value, field_name):
    """Truncate to the column length of an AuditLogEntry field."""
    return value[:AuditLogEntry._meta.get_field(field_name).max_length]


def _django_request(request):
    # DRF wraps the Django request
    return getattr(request, '_request', request)


def _render(value):
    if isinstance(value, (list, tuple, set)):
        return ', '.join(sorted(str(item) for item in value))
    if value is None:
        return 'null'
    return str(value)


def compute_changes(snapshot, submitted):
    """
    Diff submitted values against the pre-update snapshot.

    Only fields present in both and differing are kept, each rendered as
    ``"old → new"``.
    """
    changes = {}
    if not snapshot or not submitted:
        return changes

    for key, new_value in submitted.items():
        if key not in snapshot:
            continue
        old_rendered = _render(snapshot[key])
        new_rendered = _render(new_value)
        if old_rendered != new_rendered:
            changes[key] = f"{old_rendered} → {new_rendered}"

    return changes


@dataclass
class AuditDraft:
    """In-flight audit entry carried through a request."""

    user_id: Optional[str]
    user_name: str
    action: str
    resource: str
    resource_type: str
    ip_address: Optional[str]
    user_agent: str
    method: str
    request_id: str = ''
    status: Optional[str] = None
    error_message: str = ''
    changes: Dict[str, str] = field(default_factory=dict)

    def finalize(self, status_code, error_message=None, changes=None):
        """Settle the outcome: 2xx is success, anything else is an error."""
        self.status = AuditStatus.SUCCESS.value if 200 <= status_code < 300 else AuditStatus.ERROR.value
        if self.status == AuditStatus.ERROR.value and error_message:
            self.error_message = str(error_message)
        if changes:
            self.changes = changes
        return self

    def to_payload(self) -> Dict[str, Any]:
        """JSON-serializable form handed to the persistence task."""
        return {
            'user_id': self.user_id,
            'user_name': self.user_name,
            'action': self.action,
            'resource': self.resource,
            'resource_type': self.resource_type,
            'status': self.status or AuditStatus.ERROR.value,
            'changes': self.changes,
            'error_message': self.error_message,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'method': self.method,
            'request_id': self.request_id,
        }


def build_draft(request, user=None):
    """
    Open an audit draft for an authenticated request.

    Args:
        request: Django (or DRF) request
        user: Acting user; defaults to request.user

    Returns:
        AuditDraft with actor, inferred action, resource and client details
    """
    django_request = _django_request(request)
    user = user or getattr(django_request, 'user', None)
    authenticated = user is not None and user.is_authenticated

    resource_type, _ = classify_resource(django_request.path)

    return AuditDraft(
        user_id=str(user.id) if authenticated else None,
        user_name=_clip(user.name or user.email, 'user_name') if authenticated else 'Anonymous',
        action=_clip(infer_action(django_request.method, django_request.path), 'action'),
        resource=_clip(django_request.path, 'resource'),
        resource_type=resource_type,
        ip_address=get_client_ip(django_request),
        user_agent=django_request.META.get('HTTP_USER_AGENT', 'Unknown')[:1000],
        method=_clip(django_request.method, 'method'),
        request_id=_clip(str(getattr(django_request, 'request_id', '') or ''), 'request_id'),
    )


def get_action_override(view_func, method):
    """
    Return the action label declared with @audit_action, if any.

    A label on the handler method wins over one on the view class.
    """
    view_class = getattr(view_func, 'view_class', None) or getattr(view_func, 'cls', None)
    if view_class is None:
        return getattr(view_func, 'audit_action', None)

    handler = getattr(view_class, method.lower(), None)
    return getattr(handler, 'audit_action', None) or getattr(view_class, 'audit_action', None)


def audit_action(action):
    """
    Decorator overriding the inferred audit action for a view or handler.

    Usage:
        class RoleListView(APIView):
            @audit_action('roles:create')
            def post(self, request):
                pass
    """
    def decorator(view_or_method):
        view_or_method.audit_action = action
        return view_or_method

    return decorator


def capture_snapshot(request, snapshot, submitted=None):
    """
    Register the pre-update state of the resource an update touches.

    Args:
        request: DRF or Django request being handled
        snapshot: Dict of field values before the update
        submitted: Submitted values; defaults to the DRF request data
    """
    if submitted is None:
        submitted = getattr(request, 'data', None)

    django_request = _django_request(request)
    django_request.audit_snapshot = dict(snapshot)
    try:
        django_request.audit_submitted = dict(submitted or {})
    except (TypeError, ValueError):
        django_request.audit_submitted = {}


def extract_error_message(response):
    """Read the ``error`` field from a JSON response body, if present."""
    data = getattr(response, 'data', None)
    if data is None:
        content_type = response.get('Content-Type', '') if hasattr(response, 'get') else ''
        if 'json' not in content_type or getattr(response, 'streaming', False):
            return None
        try:
            data = json.loads(response.content or b'{}')
        except (ValueError, UnicodeDecodeError):
            return None

    if isinstance(data, dict) and data.get('error'):
        return data['error']
    return None


def finalize_draft(request, response):
    """Apply the response outcome and any registered changes to the draft."""
    draft = request.audit_draft

    changes = None
    if draft.method in UPDATE_METHODS:
        changes = compute_changes(
            getattr(request, 'audit_snapshot', None),
            getattr(request, 'audit_submitted', None),
        )

    return draft.finalize(
        response.status_code,
        error_message=extract_error_message(response),
        changes=changes,
    )


def dispatch(draft):
    """
    Hand a finalized draft to the persistence task without waiting for it.

    Any failure (broker unavailable, serialization) is logged and swallowed.
    """
    from apps.audit.tasks import persist_audit_entry

    try:
        persist_audit_entry.delay(draft.to_payload())
    except Exception:
        logger.error(
            "Failed to dispatch audit entry",
            extra={
                'action': draft.action,
                'request_id': draft.request_id,
            },
            exc_info=True
        )


def write_entry(payload):
    """Persist an audit payload; the timestamp is taken at write time."""
    data = dict(payload)
    data['timestamp'] = timezone.now()
    data['changes'] = data.get('changes') or {}
    data['error_message'] = data.get('error_message') or ''
    return AuditLogEntry.objects.create(**data)


def record_now(draft):
    """
    Persist a draft synchronously. Used for authorization denials.

    Returns:
        The created entry, or None if the write failed
    """
    try:
        with transaction.atomic():
            return write_entry(draft.to_payload())
    except Exception:
        logger.error(
            "Failed to write audit entry",
            extra={
                'action': draft.action,
                'request_id': draft.request_id,
            },
            exc_info=True
        )
        return None
