"""
Audit log queries and statistics.
"""
import uuid
from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import Count
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from apps.audit.models import AuditLogEntry, AuditStatus
from apps.core.exceptions import NotFoundError, ValidationError

DEFAULT_TOP_LIMIT = 10
MAX_TOP_LIMIT = 100


def parse_bound(value: Optional[str], field: str, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse a date or datetime query parameter into an aware datetime.

    A bare date (``2024-05-01``) means the start of that day, or its last
    instant when ``end_of_day`` is set.

    Raises:
        ValidationError: Value is neither an ISO date nor datetime
    """
    if not value:
        return None

    try:
        # Dates first: parse_datetime also accepts a bare date as midnight
        day = parse_date(value)
        if day is not None:
            parsed = datetime.combine(day, time.max if end_of_day else time.min)
        else:
            parsed = parse_datetime(value)
            if parsed is None:
                raise ValueError(value)
    except ValueError:
        raise ValidationError(
            f"Invalid {field}",
            details={field: ['Expected an ISO 8601 date or datetime']}
        )

    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def parse_limit(value, default: int = DEFAULT_TOP_LIMIT) -> int:
    if value in (None, ''):
        return default
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ValidationError('Invalid limit', details={'limit': ['A valid integer is required.']})
    if limit < 1:
        raise ValidationError('Invalid limit', details={'limit': ['Must be at least 1.']})
    return min(limit, MAX_TOP_LIMIT)


class AuditQueryService:
    """
    Read-side access to the audit log.

    Entries may be written out of order by workers, so every query sorts by
    ``timestamp`` explicitly.
    """

    SORT_FIELDS = {
        'timestamp': 'timestamp',
        '-timestamp': '-timestamp',
    }

    @classmethod
    def filter_entries(cls, params):
        """
        Filter entries from query parameters.

        Args:
            params: Mapping with optional user_id, action, resource, status,
                start_date, end_date and sort

        Returns:
            Ordered queryset
        """
        queryset = AuditLogEntry.objects.all()

        user_id = params.get('user_id')
        if user_id:
            try:
                queryset = queryset.for_user(uuid.UUID(str(user_id)))
            except ValueError:
                raise ValidationError('Invalid user_id', details={'user_id': ['Must be a valid UUID.']})

        action = params.get('action')
        if action:
            queryset = queryset.by_action(action.strip().lower())

        resource = params.get('resource')
        if resource:
            queryset = queryset.filter(resource__icontains=resource.strip())

        status = params.get('status')
        if status:
            status = status.strip().lower()
            if status not in AuditStatus.values:
                raise ValidationError(
                    'Invalid status',
                    details={'status': [f"Must be one of: {', '.join(AuditStatus.values)}"]}
                )
            queryset = queryset.filter(status=status)

        queryset = queryset.between(
            parse_bound(params.get('start_date'), 'start_date'),
            parse_bound(params.get('end_date'), 'end_date', end_of_day=True),
        )

        sort = params.get('sort') or '-timestamp'
        return queryset.order_by(cls.SORT_FIELDS.get(sort, '-timestamp'))

    @classmethod
    def get_entry(cls, entry_id) -> AuditLogEntry:
        try:
            return AuditLogEntry.objects.get(id=entry_id)
        except (AuditLogEntry.DoesNotExist, ValueError, TypeError, DjangoValidationError):
            raise NotFoundError('Audit log entry not found')

    @classmethod
    def entries_for_user(cls, user_id, params=None):
        """
        Entries written for one user, newest first.

        Raises:
            NotFoundError: The user does not exist
        """
        from apps.rbac.services import UserRoleService

        user = UserRoleService.get_user(user_id)
        params = dict(params or {})
        params['user_id'] = str(user.id)
        return cls.filter_entries(params)

    @classmethod
    def top_actions(cls, limit: int = DEFAULT_TOP_LIMIT, start=None, end=None) -> List[Dict[str, Any]]:
        """Most frequent actions in the window as ``[{action, count}]``."""
        rows = (
            AuditLogEntry.objects.between(start, end)
            .values('action')
            .annotate(count=Count('id'))
            .order_by('-count', 'action')[:limit]
        )
        return [{'action': row['action'], 'count': row['count']} for row in rows]

    @classmethod
    def top_users(cls, limit: int = DEFAULT_TOP_LIMIT, start=None, end=None) -> List[Dict[str, Any]]:
        """Most active users in the window as ``[{user_id, user_name, count}]``."""
        rows = (
            AuditLogEntry.objects.between(start, end)
            .filter(user_id__isnull=False)
            .values('user_id', 'user_name')
            .annotate(count=Count('id'))
            .order_by('-count', 'user_name')[:limit]
        )
        return [
            {
                'user_id': str(row['user_id']),
                'user_name': row['user_name'],
                'count': row['count'],
            }
            for row in rows
        ]

    @classmethod
    def recent_errors(cls, limit: int = DEFAULT_TOP_LIMIT, start=None, end=None) -> List[Dict[str, Any]]:
        """Most frequent failures grouped by action and message."""
        rows = (
            AuditLogEntry.objects.between(start, end)
            .errors()
            .values('action', 'error_message')
            .annotate(count=Count('id'))
            .order_by('-count', 'action')[:limit]
        )
        return [
            {'action': row['action'], 'error': row['error_message'], 'count': row['count']}
            for row in rows
        ]

    @classmethod
    def stats(cls, start=None, end=None) -> Dict[str, Any]:
        """
        Summary statistics for the audit dashboard.

        ``change_percent`` compares today's entry count against yesterday's
        and is 0 when there were no entries yesterday.
        """
        queryset = AuditLogEntry.objects.between(start, end)
        total = queryset.count()
        successes = queryset.filter(status=AuditStatus.SUCCESS).count()

        today_start = timezone.localtime().replace(hour=0, minute=0, second=0, microsecond=0)
        yesterday_start = today_start - timedelta(days=1)
        today_actions = AuditLogEntry.objects.filter(timestamp__gte=today_start).count()
        yesterday_actions = AuditLogEntry.objects.filter(
            timestamp__gte=yesterday_start,
            timestamp__lt=today_start,
        ).count()

        if yesterday_actions:
            change_percent = round((today_actions - yesterday_actions) / yesterday_actions * 100, 2)
        else:
            change_percent = 0

        return {
            'total_actions': total,
            'success_rate': round(successes / total * 100, 2) if total else 0,
            'top_actions': cls.top_actions(start=start, end=end),
            'top_users': cls.top_users(start=start, end=end),
            'recent_errors': cls.recent_errors(start=start, end=end),
            'today_actions': today_actions,
            'yesterday_actions': yesterday_actions,
            'change_percent': change_percent,
        }
