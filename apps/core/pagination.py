"""
Pagination for list endpoints.

List responses use the standard envelope with a pagination block:

    {"success": true, "data": [...],
     "pagination": {"page": 1, "limit": 50, "total": 120, "pages": 3}}
"""
import math

from django.conf import settings
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class StandardResultsSetPagination(PageNumberPagination):
    """Page/limit pagination rendered into the response envelope."""

    page_size = 50
    page_query_param = 'page'
    page_size_query_param = 'limit'
    max_page_size = 100

    def get_paginated_response(self, data, message=None):
        limit = self.page.paginator.per_page
        total = self.page.paginator.count
        payload = {
            'success': True,
            'data': data,
            'pagination': {
                'page': self.page.number,
                'limit': limit,
                'total': total,
                'pages': math.ceil(total / limit) if limit else 0,
            },
        }
        if message:
            payload['message'] = message
        return Response(payload)

    def get_paginated_response_schema(self, schema):
        return {
            'type': 'object',
            'properties': {
                'success': {'type': 'boolean', 'example': True},
                'data': schema,
                'pagination': {
                    'type': 'object',
                    'properties': {
                        'page': {'type': 'integer', 'example': 1},
                        'limit': {'type': 'integer', 'example': self.page_size},
                        'total': {'type': 'integer', 'example': 120},
                        'pages': {'type': 'integer', 'example': 3},
                    },
                },
            },
        }


class AuditLogPagination(StandardResultsSetPagination):
    """Audit log listing; page size defaults to AUDIT_LOG_PAGE_SIZE."""

    max_page_size = 200

    def get_page_size(self, request):
        self.page_size = getattr(settings, 'AUDIT_LOG_PAGE_SIZE', 50)
        return super().get_page_size(request)


def paginate(view, queryset, serializer_class, request, message=None, **serializer_kwargs):
    """
    Paginate a queryset with the view's pagination class and build the response.
    """
    paginator = view.pagination_class()
    page = paginator.paginate_queryset(queryset, request, view=view)
    serializer = serializer_class(page, many=True, **serializer_kwargs)
    return paginator.get_paginated_response(serializer.data, message=message)
