"""
RBAC administration API URLs.

Provides endpoints for:
- Permission registry management
- Role management (CRUD, permission assignments)
- User administration (role assignments, deletion)
"""
from django.urls import path
from apps.rbac.views import (
    PermissionListView,
    PermissionCategoriesView,
    PermissionCheckView,
    PermissionDetailView,
    RoleListView,
    RoleDetailView,
    RolePermissionAddView,
    RolePermissionRemoveView,
    UserListView,
    UserDetailView,
    UserPermissionsView,
    UserRolesView,
    UserRoleRemoveView,
)

app_name = 'rbac'

urlpatterns = [
    # Permission endpoints
    path('permissions', PermissionListView.as_view(), name='permission-list'),
    path('permissions/categories', PermissionCategoriesView.as_view(), name='permission-categories'),
    path('permissions/check/<str:name>', PermissionCheckView.as_view(), name='permission-check'),
    path('permissions/<uuid:permission_id>', PermissionDetailView.as_view(), name='permission-detail'),

    # Role endpoints
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/<uuid:role_id>', RoleDetailView.as_view(), name='role-detail'),
    path('roles/<uuid:role_id>/permissions', RolePermissionAddView.as_view(), name='role-permissions-add'),
    path('roles/<uuid:role_id>/permissions/<uuid:permission_id>', RolePermissionRemoveView.as_view(), name='role-permissions-remove'),

    # User endpoints
    path('users', UserListView.as_view(), name='user-list'),
    path('users/<uuid:user_id>', UserDetailView.as_view(), name='user-detail'),
    path('users/<uuid:user_id>/permissions', UserPermissionsView.as_view(), name='user-permissions'),
    path('users/<uuid:user_id>/roles', UserRolesView.as_view(), name='user-roles'),
    path('users/<uuid:user_id>/roles/<uuid:role_id>', UserRoleRemoveView.as_view(), name='user-role-remove'),
]
