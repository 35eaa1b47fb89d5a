"""
Audit log REST API views.

Implements endpoints for:
- Filtered, paginated listing of audit entries
- Entry detail and per-user history
- Dashboard statistics (totals, success rate, top actions/users, errors)

All endpoints require `audit:read`.
"""
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from apps.audit.serializers import (
    AuditLogEntrySerializer, AuditStatsSerializer,
    ActionCountSerializer, UserCountSerializer,
)
from apps.audit.services import AuditQueryService, parse_bound, parse_limit
from apps.core.pagination import AuditLogPagination, paginate
from apps.core.permissions import requires_permission

DATE_RANGE_PARAMETERS = [
    OpenApiParameter('start_date', OpenApiTypes.STR, description='ISO date or datetime, inclusive'),
    OpenApiParameter('end_date', OpenApiTypes.STR, description='ISO date or datetime, inclusive (a date covers the whole day)'),
]

LIST_PARAMETERS = [
    OpenApiParameter('user_id', OpenApiTypes.UUID, description='Filter by acting user'),
    OpenApiParameter('action', OpenApiTypes.STR, description="Exact action label (e.g. 'roles:create')"),
    OpenApiParameter('resource', OpenApiTypes.STR, description='Case-insensitive substring of the request path'),
    OpenApiParameter('status', OpenApiTypes.STR, enum=['success', 'error'], description='Outcome'),
    *DATE_RANGE_PARAMETERS,
    OpenApiParameter('sort', OpenApiTypes.STR, enum=['-timestamp', 'timestamp'], description='Default newest first'),
    OpenApiParameter('page', OpenApiTypes.INT, description='Page number (default 1)'),
    OpenApiParameter('limit', OpenApiTypes.INT, description='Page size (default AUDIT_LOG_PAGE_SIZE)'),
]


def _date_range(request):
    return (
        parse_bound(request.query_params.get('start_date'), 'start_date'),
        parse_bound(request.query_params.get('end_date'), 'end_date', end_of_day=True),
    )


@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Audit Logs'],
        summary='List audit log entries',
        description='''
List audit entries, newest first unless `sort=timestamp`.

**Required permission:** `audit:read`
        ''',
        parameters=LIST_PARAMETERS,
        responses={200: AuditLogEntrySerializer(many=True)}
    )
)
@requires_permission('audit:read')
class AuditLogListView(APIView):
    """
    GET /v1/admin/audit-logs
    """
    pagination_class = AuditLogPagination

    def get(self, request):
        entries = AuditQueryService.filter_entries(request.query_params)
        return paginate(self, entries, AuditLogEntrySerializer, request)


@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Audit Logs'],
        summary='Get audit log entry',
        description='**Required permission:** `audit:read`',
        responses={200: AuditLogEntrySerializer, 404: OpenApiTypes.OBJECT}
    )
)
@requires_permission('audit:read')
class AuditLogDetailView(APIView):
    """
    GET /v1/admin/audit-logs/{id}
    """

    def get(self, request, entry_id):
        entry = AuditQueryService.get_entry(entry_id)
        return Response({
            'success': True,
            'data': AuditLogEntrySerializer(entry).data,
        })


@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Audit Logs'],
        summary='List audit entries for a user',
        description='''
History of one user, newest first. 404 when the user does not exist.

**Required permission:** `audit:read`
        ''',
        parameters=LIST_PARAMETERS[1:],
        responses={200: AuditLogEntrySerializer(many=True), 404: OpenApiTypes.OBJECT}
    )
)
@requires_permission('audit:read')
class AuditLogUserView(APIView):
    """
    GET /v1/admin/audit-logs/user/{user_id}
    """
    pagination_class = AuditLogPagination

    def get(self, request, user_id):
        entries = AuditQueryService.entries_for_user(user_id, request.query_params.dict())
        return paginate(self, entries, AuditLogEntrySerializer, request)


@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Audit Logs'],
        summary='Audit statistics',
        description='''
Totals, success rate (percent, 2 decimals), top actions and users, most
frequent errors, and today's activity compared with yesterday's.

**Required permission:** `audit:read`
        ''',
        parameters=DATE_RANGE_PARAMETERS,
        responses={200: AuditStatsSerializer}
    )
)
@requires_permission('audit:read')
class AuditLogStatsView(APIView):
    """
    GET /v1/admin/audit-logs/stats
    """

    def get(self, request):
        start, end = _date_range(request)
        return Response({
            'success': True,
            'data': AuditQueryService.stats(start=start, end=end),
        })


@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Audit Logs'],
        summary='Most frequent actions',
        description='**Required permission:** `audit:read`',
        parameters=[
            OpenApiParameter('limit', OpenApiTypes.INT, description='Number of rows (default 10)'),
            *DATE_RANGE_PARAMETERS,
        ],
        responses={200: ActionCountSerializer(many=True)}
    )
)
@requires_permission('audit:read')
class AuditLogTopActionsView(APIView):
    """
    GET /v1/admin/audit-logs/top-actions
    """

    def get(self, request):
        start, end = _date_range(request)
        limit = parse_limit(request.query_params.get('limit'))
        return Response({
            'success': True,
            'data': AuditQueryService.top_actions(limit=limit, start=start, end=end),
        })


@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Audit Logs'],
        summary='Most active users',
        description='**Required permission:** `audit:read`',
        parameters=[
            OpenApiParameter('limit', OpenApiTypes.INT, description='Number of rows (default 10)'),
            *DATE_RANGE_PARAMETERS,
        ],
        responses={200: UserCountSerializer(many=True)}
    )
)
@requires_permission('audit:read')
class AuditLogTopUsersView(APIView):
    """
    GET /v1/admin/audit-logs/top-users
    """

    def get(self, request):
        start, end = _date_range(request)
        limit = parse_limit(request.query_params.get('limit'))
        return Response({
            'success': True,
            'data': AuditQueryService.top_users(limit=limit, start=start, end=end),
        })
