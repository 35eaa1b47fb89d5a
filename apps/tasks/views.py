"""
Task REST API views.

Each endpoint is gated by the matching `tasks:*` permission. Users only ever
see and change their own tasks; other users' tasks answer 404.
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from apps.audit.recorder import capture_snapshot
from apps.core.exceptions import NotFoundError, ValidationError
from apps.core.pagination import StandardResultsSetPagination, paginate
from apps.core.permissions import requires_permission
from apps.tasks.models import Task
from apps.tasks.serializers import TaskSerializer, TaskWriteSerializer


def _get_own_task(user, task_id):
    try:
        return Task.objects.owned_by(user).get(id=task_id)
    except Task.DoesNotExist:
        raise NotFoundError('Task not found')


@extend_schema_view(
    get=extend_schema(
        tags=['Tasks'],
        summary='List my tasks',
        description='**Required permission:** `tasks:read`',
        parameters=[
            OpenApiParameter('completed', OpenApiTypes.BOOL, description='Filter by completion'),
            OpenApiParameter('page', OpenApiTypes.INT, description='Page number (default 1)'),
            OpenApiParameter('limit', OpenApiTypes.INT, description='Page size (default 50, max 100)'),
        ],
        responses={200: TaskSerializer(many=True)}
    ),
    post=extend_schema(
        tags=['Tasks'],
        summary='Create task',
        description='**Required permission:** `tasks:create`',
        request=TaskWriteSerializer,
        responses={201: TaskSerializer, 400: OpenApiTypes.OBJECT}
    ),
)
class TaskListView(APIView):
    """
    GET  /v1/tasks
    POST /v1/tasks
    """
    pagination_class = StandardResultsSetPagination

    @requires_permission('tasks:read')
    def get(self, request):
        tasks = Task.objects.owned_by(request.user)

        completed = request.query_params.get('completed')
        if completed is not None:
            tasks = tasks.completed() if completed.lower() in ('true', '1') else tasks.pending()

        return paginate(self, tasks, TaskSerializer, request)

    @requires_permission('tasks:create')
    def post(self, request):
        serializer = TaskWriteSerializer(data=request.data)
        if not serializer.is_valid():
            raise ValidationError('Validation error', details=serializer.errors)

        task = serializer.save(owner=request.user)
        return Response(
            {
                'success': True,
                'data': TaskSerializer(task).data,
                'message': 'Task created successfully',
            },
            status=status.HTTP_201_CREATED
        )


@extend_schema_view(
    get=extend_schema(
        tags=['Tasks'],
        summary='Get task',
        description='**Required permission:** `tasks:read`',
        responses={200: TaskSerializer, 404: OpenApiTypes.OBJECT}
    ),
    put=extend_schema(
        tags=['Tasks'],
        summary='Update task',
        description='''
Update any of title, description and completed. The changed fields are
recorded in the audit log.

**Required permission:** `tasks:update`
        ''',
        request=TaskWriteSerializer,
        responses={200: TaskSerializer, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    ),
    delete=extend_schema(
        tags=['Tasks'],
        summary='Delete task',
        description='**Required permission:** `tasks:delete`',
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    ),
)
class TaskDetailView(APIView):
    """
    GET    /v1/tasks/{id}
    PUT    /v1/tasks/{id}
    DELETE /v1/tasks/{id}
    """

    @requires_permission('tasks:read')
    def get(self, request, task_id):
        task = _get_own_task(request.user, task_id)
        return Response({
            'success': True,
            'data': TaskSerializer(task).data,
        })

    @requires_permission('tasks:update')
    def put(self, request, task_id):
        task = _get_own_task(request.user, task_id)

        serializer = TaskWriteSerializer(task, data=request.data, partial=True)
        if not serializer.is_valid():
            raise ValidationError('Validation error', details=serializer.errors)

        capture_snapshot(
            request,
            {
                'title': task.title,
                'description': task.description,
                'completed': task.completed,
            },
            submitted=serializer.validated_data
        )

        task = serializer.save()
        return Response({
            'success': True,
            'data': TaskSerializer(task).data,
            'message': 'Task updated successfully',
        })

    @requires_permission('tasks:delete')
    def delete(self, request, task_id):
        task = _get_own_task(request.user, task_id)
        task.delete()
        return Response({
            'success': True,
            'message': 'Task deleted successfully',
        })
