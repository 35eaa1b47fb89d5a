"""
RBAC administration REST API views.

Implements endpoints for:
- Permission registry management (CRUD, categories, existence check)
- Role management (CRUD, permission assignments)
- User administration (listing, role assignments, deletion)

Every endpoint is gated by a named permission through HasPermission and
every request is recorded by the audit middleware.
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.audit.recorder import audit_action, capture_snapshot
from apps.core.exceptions import ValidationError
from apps.core.pagination import StandardResultsSetPagination, paginate
from apps.core.permissions import requires_permission
from apps.rbac.models import User
from apps.rbac.services import (
    PermissionResolver, PermissionService, RoleService, UserRoleService,
)
from apps.rbac.serializers import (
    PermissionSerializer, PermissionCreateSerializer, PermissionUpdateSerializer,
    RoleSerializer, RoleCreateSerializer, RoleUpdateSerializer, RolePermissionSerializer,
    UserSerializer, AssignRoleSerializer, ReplaceRolesSerializer, RoleSummarySerializer,
)


def _validated(serializer_class, data):
    """Run a serializer and raise the envelope ValidationError on failure."""
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        raise ValidationError('Validation error', details=serializer.errors)
    return serializer.validated_data


def _as_bool(value, default=True):
    if value is None:
        return default
    return str(value).strip().lower() not in ('false', '0', 'no')


# ===== PERMISSIONS =====

@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Permissions'],
        summary='List permissions',
        description='''
List every permission in the registry, ordered by category then name.

**Required permission:** `permissions:read`
        ''',
        parameters=[
            OpenApiParameter('category', OpenApiTypes.STR, description='Filter by category (e.g. tasks, users)'),
            OpenApiParameter('page', OpenApiTypes.INT, description='Page number (default 1)'),
            OpenApiParameter('limit', OpenApiTypes.INT, description='Page size (default 50, max 100)'),
        ],
        responses={200: PermissionSerializer(many=True)}
    ),
    post=extend_schema(
        tags=['Admin - Permissions'],
        summary='Create permission',
        description='''
Create a custom permission. The name must use `category:action` form and its
prefix must equal the category.

**Required permission:** `permissions:manage`
        ''',
        request=PermissionCreateSerializer,
        responses={
            201: PermissionSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
        },
        examples=[
            OpenApiExample(
                'Create Request',
                value={
                    'name': 'reports:schedule',
                    'description': 'Schedule recurring reports',
                    'category': 'reports',
                },
                request_only=True
            )
        ]
    ),
)
class PermissionListView(APIView):
    """
    GET  /v1/admin/permissions
    POST /v1/admin/permissions
    """
    pagination_class = StandardResultsSetPagination

    @requires_permission('permissions:read')
    def get(self, request):
        permissions = PermissionService.list_permissions(request.query_params.get('category'))
        return paginate(self, permissions, PermissionSerializer, request)

    @requires_permission('permissions:manage')
    def post(self, request):
        data = _validated(PermissionCreateSerializer, request.data)
        permission = PermissionService.create_permission(
            name=data['name'],
            description=data['description'],
            category=data['category'],
            is_system_permission=data.get('is_system_permission', False),
        )
        return Response(
            {
                'success': True,
                'data': PermissionSerializer(permission).data,
                'message': 'Permission created successfully',
            },
            status=status.HTTP_201_CREATED
        )


@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Permissions'],
        summary='List permission categories',
        description='Categories that currently hold at least one permission.\n\n**Required permission:** `permissions:read`',
        responses={200: OpenApiTypes.OBJECT}
    )
)
class PermissionCategoriesView(APIView):
    """
    GET /v1/admin/permissions/categories
    """

    @requires_permission('permissions:read')
    def get(self, request):
        return Response({
            'success': True,
            'data': PermissionService.get_categories(),
        })


@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Permissions'],
        summary='Check permission exists',
        description='Report whether a permission name is registered.\n\n**Required permission:** `permissions:read`',
        responses={200: OpenApiTypes.OBJECT}
    )
)
class PermissionCheckView(APIView):
    """
    GET /v1/admin/permissions/check/{name}
    """

    @requires_permission('permissions:read')
    def get(self, request, name):
        permission = PermissionService.permission_exists(name)
        return Response({
            'success': True,
            'data': {
                'name': name.strip().lower(),
                'exists': permission is not None,
                'permission': PermissionSerializer(permission).data if permission else None,
            },
        })


@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Permissions'],
        summary='Get permission',
        description='**Required permission:** `permissions:read`',
        responses={200: PermissionSerializer, 404: OpenApiTypes.OBJECT}
    ),
    put=extend_schema(
        tags=['Admin - Permissions'],
        summary='Update permission',
        description='''
Update a custom permission. System permissions cannot be modified (403).

**Required permission:** `permissions:manage`
        ''',
        request=PermissionUpdateSerializer,
        responses={
            200: PermissionSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    ),
    delete=extend_schema(
        tags=['Admin - Permissions'],
        summary='Delete permission',
        description='''
Delete a custom permission and remove it from every role holding it.
System permissions cannot be deleted (403).

**Required permission:** `permissions:manage`
        ''',
        responses={
            200: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    ),
)
class PermissionDetailView(APIView):
    """
    GET    /v1/admin/permissions/{id}
    PUT    /v1/admin/permissions/{id}
    DELETE /v1/admin/permissions/{id}
    """

    @requires_permission('permissions:read')
    def get(self, request, permission_id):
        permission = PermissionService.get_permission(permission_id)
        return Response({
            'success': True,
            'data': PermissionSerializer(permission).data,
        })

    @requires_permission('permissions:manage')
    def put(self, request, permission_id):
        data = _validated(PermissionUpdateSerializer, request.data)

        current = PermissionService.get_permission(permission_id)
        capture_snapshot(
            request,
            {
                'name': current.name,
                'description': current.description,
                'category': current.category,
            },
            submitted=data
        )

        permission = PermissionService.update_permission(
            permission_id,
            name=data.get('name'),
            description=data.get('description'),
            category=data.get('category'),
        )
        return Response({
            'success': True,
            'data': PermissionSerializer(permission).data,
            'message': 'Permission updated successfully',
        })

    @requires_permission('permissions:manage')
    def delete(self, request, permission_id):
        role_count = PermissionService.delete_permission(permission_id)
        return Response({
            'success': True,
            'data': {'roles_affected': role_count},
            'message': f"Permission deleted and removed from {role_count} role(s)",
        })


# ===== ROLES =====

@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Roles'],
        summary='List roles',
        description='''
List roles with their permissions and holder counts.

**Required permission:** `roles:read`
        ''',
        parameters=[
            OpenApiParameter('include_system', OpenApiTypes.BOOL, description='Include system roles (default true)'),
            OpenApiParameter('page', OpenApiTypes.INT, description='Page number (default 1)'),
            OpenApiParameter('limit', OpenApiTypes.INT, description='Page size (default 50, max 100)'),
        ],
        responses={200: RoleSerializer(many=True)}
    ),
    post=extend_schema(
        tags=['Admin - Roles'],
        summary='Create role',
        description='''
Create a custom role. Every permission id must exist, otherwise nothing is
created (400).

**Required permission:** `roles:manage`
        ''',
        request=RoleCreateSerializer,
        responses={
            201: RoleSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
        }
    ),
)
class RoleListView(APIView):
    """
    GET  /v1/admin/roles
    POST /v1/admin/roles
    """
    pagination_class = StandardResultsSetPagination

    @requires_permission('roles:read')
    def get(self, request):
        roles = RoleService.list_roles(
            include_system=_as_bool(request.query_params.get('include_system'))
        )
        return paginate(self, roles, RoleSerializer, request)

    @requires_permission('roles:manage')
    def post(self, request):
        data = _validated(RoleCreateSerializer, request.data)
        role = RoleService.create_role(
            name=data['name'],
            description=data.get('description', ''),
            permission_ids=data.get('permissions', []),
        )
        return Response(
            {
                'success': True,
                'data': RoleSerializer(RoleService.get_role(role.id)).data,
                'message': 'Role created successfully',
            },
            status=status.HTTP_201_CREATED
        )


@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Roles'],
        summary='Get role',
        description='**Required permission:** `roles:read`',
        responses={200: RoleSerializer, 404: OpenApiTypes.OBJECT}
    ),
    put=extend_schema(
        tags=['Admin - Roles'],
        summary='Update role',
        description='''
Update a role's name, description and/or permission list. System roles
cannot be renamed (403). A replacement permission list is validated
all-or-nothing.

**Required permission:** `roles:manage`
        ''',
        request=RoleUpdateSerializer,
        responses={
            200: RoleSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    ),
    delete=extend_schema(
        tags=['Admin - Roles'],
        summary='Delete role',
        description='''
Delete a role. Roles still held by users cannot be deleted (400, the message
names how many users hold it). System roles cannot be deleted (403).

**Required permission:** `roles:manage`
        ''',
        responses={
            200: OpenApiTypes.OBJECT,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    ),
)
class RoleDetailView(APIView):
    """
    GET    /v1/admin/roles/{id}
    PUT    /v1/admin/roles/{id}
    DELETE /v1/admin/roles/{id}
    """

    @requires_permission('roles:read')
    def get(self, request, role_id):
        return Response({
            'success': True,
            'data': RoleSerializer(RoleService.get_role(role_id)).data,
        })

    @requires_permission('roles:manage')
    def put(self, request, role_id):
        data = _validated(RoleUpdateSerializer, request.data)

        current = RoleService.get_role(role_id)
        submitted = dict(data)
        if 'permissions' in submitted:
            submitted['permissions'] = [str(pid) for pid in submitted['permissions']]
        capture_snapshot(
            request,
            {
                'name': current.name,
                'description': current.description,
                'permissions': [str(p.id) for p in current.permissions.all()],
            },
            submitted=submitted
        )

        role = RoleService.update_role(
            role_id,
            name=data.get('name'),
            description=data.get('description'),
            permission_ids=data.get('permissions'),
        )
        return Response({
            'success': True,
            'data': RoleSerializer(RoleService.get_role(role.id)).data,
            'message': 'Role updated successfully',
        })

    @requires_permission('roles:manage')
    def delete(self, request, role_id):
        name = RoleService.delete_role(role_id)
        return Response({
            'success': True,
            'message': f"Role '{name}' deleted successfully",
        })


@extend_schema_view(
    post=extend_schema(
        tags=['Admin - Roles'],
        summary='Add permission to role',
        description='''
Grant one permission to a role. 400 if the role already has it, 404 if the
permission does not exist.

**Required permission:** `roles:manage`
        ''',
        request=RolePermissionSerializer,
        responses={
            200: RoleSerializer,
            400: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    )
)
class RolePermissionAddView(APIView):
    """
    POST /v1/admin/roles/{id}/permissions
    """

    @requires_permission('roles:manage')
    @audit_action('roles:add_permission')
    def post(self, request, role_id):
        data = _validated(RolePermissionSerializer, request.data)
        role = RoleService.add_permission(role_id, data['permission_id'])
        return Response({
            'success': True,
            'data': RoleSerializer(RoleService.get_role(role.id)).data,
            'message': 'Permission added to role',
        })


@extend_schema_view(
    delete=extend_schema(
        tags=['Admin - Roles'],
        summary='Remove permission from role',
        description='''
Revoke one permission from a role. 400 if the role does not have it; 403 when
removing a system permission from a system role.

**Required permission:** `roles:manage`
        ''',
        responses={
            200: RoleSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    )
)
class RolePermissionRemoveView(APIView):
    """
    DELETE /v1/admin/roles/{id}/permissions/{permission_id}
    """

    @requires_permission('roles:manage')
    @audit_action('roles:remove_permission')
    def delete(self, request, role_id, permission_id):
        role = RoleService.remove_permission(role_id, permission_id)
        return Response({
            'success': True,
            'data': RoleSerializer(RoleService.get_role(role.id)).data,
            'message': 'Permission removed from role',
        })


# ===== USERS =====

@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Users'],
        summary='List users',
        description='''
List user accounts with their roles. Password hashes are never returned.

**Required permission:** `users:read`
        ''',
        parameters=[
            OpenApiParameter('role', OpenApiTypes.STR, description='Only users holding this role'),
            OpenApiParameter('page', OpenApiTypes.INT, description='Page number (default 1)'),
            OpenApiParameter('limit', OpenApiTypes.INT, description='Page size (default 50, max 100)'),
        ],
        responses={200: UserSerializer(many=True)}
    )
)
class UserListView(APIView):
    """
    GET /v1/admin/users
    """
    pagination_class = StandardResultsSetPagination

    @requires_permission('users:read')
    def get(self, request):
        role = request.query_params.get('role')
        users = User.objects.with_role(role.strip()) if role else User.objects.all()
        users = users.prefetch_related('roles').order_by('-created_at')
        return paginate(self, users, UserSerializer, request)


@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Users'],
        summary='Get user',
        description='**Required permission:** `users:read`',
        responses={200: UserSerializer, 404: OpenApiTypes.OBJECT}
    ),
    delete=extend_schema(
        tags=['Admin - Users'],
        summary='Delete user',
        description='''
Delete a user account together with the tasks it owns. Admins cannot delete
themselves and the last admin cannot be deleted (400).

**Required permission:** `users:delete`
        ''',
        responses={
            200: OpenApiTypes.OBJECT,
            400: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    ),
)
class UserDetailView(APIView):
    """
    GET    /v1/admin/users/{id}
    DELETE /v1/admin/users/{id}
    """

    @requires_permission('users:read')
    def get(self, request, user_id):
        return Response({
            'success': True,
            'data': UserSerializer(UserRoleService.get_user(user_id)).data,
        })

    @requires_permission('users:delete')
    def delete(self, request, user_id):
        user = UserRoleService.get_user(user_id)
        UserRoleService.delete_user(user, deleted_by=request.user)
        return Response({
            'success': True,
            'message': 'User deleted successfully',
        })


@extend_schema_view(
    get=extend_schema(
        tags=['Admin - Users'],
        summary='Get user effective permissions',
        description='''
Deduplicated union of the permissions of every role the user holds.

**Required permission:** `users:read`
        ''',
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
class UserPermissionsView(APIView):
    """
    GET /v1/admin/users/{id}/permissions
    """

    @requires_permission('users:read')
    def get(self, request, user_id):
        user = UserRoleService.get_user(user_id)
        return Response({
            'success': True,
            'data': {
                'user_id': str(user.id),
                'roles': RoleSummarySerializer(user.roles.all(), many=True).data,
                'permissions': PermissionResolver.resolve_effective_permissions(user),
            },
        })


@extend_schema_view(
    post=extend_schema(
        tags=['Admin - Users'],
        summary='Assign role to user',
        description='''
Assign one role to a user. 400 if the user already holds it.

**Required permission:** `users:manage`
        ''',
        request=AssignRoleSerializer,
        responses={
            201: UserSerializer,
            400: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    ),
    put=extend_schema(
        tags=['Admin - Users'],
        summary='Replace user roles',
        description='''
Replace every role of a user with a non-empty list of existing roles. The
last admin cannot lose the admin role (400).

**Required permission:** `users:manage`
        ''',
        request=ReplaceRolesSerializer,
        responses={
            200: UserSerializer,
            400: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    ),
)
class UserRolesView(APIView):
    """
    POST /v1/admin/users/{id}/roles
    PUT  /v1/admin/users/{id}/roles
    """

    @requires_permission('users:manage')
    @audit_action('users:assign_role')
    def post(self, request, user_id):
        data = _validated(AssignRoleSerializer, request.data)
        user = UserRoleService.get_user(user_id)
        role = RoleService.get_role(data['role_id'])
        UserRoleService.assign_role(user, role, assigned_by=request.user)
        return Response(
            {
                'success': True,
                'data': UserSerializer(UserRoleService.get_user(user.id)).data,
                'message': f"Role '{role.name}' assigned",
            },
            status=status.HTTP_201_CREATED
        )

    @requires_permission('users:manage')
    @audit_action('users:replace_roles')
    def put(self, request, user_id):
        data = _validated(ReplaceRolesSerializer, request.data)
        user = UserRoleService.get_user(user_id)

        capture_snapshot(
            request,
            {'roles': user.get_role_names()},
            submitted={'roles': [role.name for role in RoleService.resolve_roles(data['roles'])]}
        )

        UserRoleService.replace_roles(user, data['roles'], changed_by=request.user)
        return Response({
            'success': True,
            'data': UserSerializer(UserRoleService.get_user(user.id)).data,
            'message': 'User roles updated',
        })


@extend_schema_view(
    delete=extend_schema(
        tags=['Admin - Users'],
        summary='Remove role from user',
        description='''
Remove one role from a user. Rejected with 400 if the user does not hold it,
if it is their last role, or if it would remove the last admin.

**Required permission:** `users:manage`
        ''',
        responses={
            200: UserSerializer,
            400: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    )
)
class UserRoleRemoveView(APIView):
    """
    DELETE /v1/admin/users/{id}/roles/{role_id}
    """

    @requires_permission('users:manage')
    @audit_action('users:remove_role')
    def delete(self, request, user_id, role_id):
        user = UserRoleService.get_user(user_id)
        role = RoleService.get_role(role_id)
        UserRoleService.remove_role(user, role, removed_by=request.user)
        return Response({
            'success': True,
            'data': UserSerializer(UserRoleService.get_user(user.id)).data,
            'message': f"Role '{role.name}' removed",
        })
