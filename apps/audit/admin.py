"""
Django admin configuration for the audit log.

Entries are append-only, so the admin is read-only.
"""
from django.contrib import admin
from .models import AuditLogEntry


@admin.register(AuditLogEntry)
class AuditLogEntryAdmin(admin.ModelAdmin):
    list_display = ['timestamp', 'user_name', 'action', 'status', 'method', 'resource', 'ip_address']
    list_filter = ['status', 'resource_type', 'method', 'timestamp']
    search_fields = ['action', 'resource', 'user_name', 'request_id', 'error_message']
    ordering = ['-timestamp']
    date_hierarchy = 'timestamp'

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
