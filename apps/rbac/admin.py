"""
Django admin configuration for RBAC app.
"""
from django.contrib import admin
from .models import User, Permission, Role, RolePermission, UserRole


class UserRoleInline(admin.TabularInline):
    model = UserRole
    fk_name = 'user'
    extra = 0
    autocomplete_fields = ['role']
    readonly_fields = ['assigned_by', 'created_at']


class RolePermissionInline(admin.TabularInline):
    model = RolePermission
    extra = 0
    autocomplete_fields = ['permission']


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    """
    Admin for the email-based User model.

    Passwords are changed through the API or ``create_admin``; the hash is
    shown read-only.
    """
    list_display = ['email', 'name', 'role_list', 'is_active', 'is_superuser', 'last_login', 'created_at']
    list_filter = ['is_active', 'is_superuser', 'roles']
    search_fields = ['email', 'name']
    ordering = ['-created_at']
    readonly_fields = ['password_hash', 'last_login', 'created_at', 'updated_at']
    fieldsets = (
        (None, {
            'fields': ('email', 'name', 'password_hash')
        }),
        ('Status', {
            'fields': ('is_active', 'is_superuser')
        }),
        ('Activity', {
            'fields': ('last_login', 'created_at', 'updated_at')
        }),
    )
    inlines = [UserRoleInline]

    def role_list(self, obj):
        return ', '.join(obj.get_role_names())
    role_list.short_description = 'Roles'


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ['name', 'description', 'is_system_role', 'created_at']
    list_filter = ['is_system_role']
    search_fields = ['name', 'description']
    ordering = ['name']
    inlines = [RolePermissionInline]

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.is_system_role:
            return False
        return super().has_delete_permission(request, obj)


@admin.register(Permission)
class PermissionAdmin(admin.ModelAdmin):
    list_display = ['name', 'category', 'description', 'is_system_permission']
    list_filter = ['category', 'is_system_permission']
    search_fields = ['name', 'description']
    ordering = ['category', 'name']

    def get_readonly_fields(self, request, obj=None):
        if obj is not None and obj.is_system_permission:
            return ['name', 'category', 'description', 'is_system_permission']
        return super().get_readonly_fields(request, obj)

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.is_system_permission:
            return False
        return super().has_delete_permission(request, obj)
