"""
Audit log API URLs.
"""
from django.urls import path
from apps.audit.views import (
    AuditLogListView,
    AuditLogDetailView,
    AuditLogUserView,
    AuditLogStatsView,
    AuditLogTopActionsView,
    AuditLogTopUsersView,
)

app_name = 'audit'

urlpatterns = [
    path('audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
    path('audit-logs/stats', AuditLogStatsView.as_view(), name='audit-log-stats'),
    path('audit-logs/top-actions', AuditLogTopActionsView.as_view(), name='audit-log-top-actions'),
    path('audit-logs/top-users', AuditLogTopUsersView.as_view(), name='audit-log-top-users'),
    path('audit-logs/user/<str:user_id>', AuditLogUserView.as_view(), name='audit-log-user'),
    path('audit-logs/<uuid:entry_id>', AuditLogDetailView.as_view(), name='audit-log-detail'),
]
