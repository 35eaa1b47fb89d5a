"""
Audit log serializers.
"""
from rest_framework import serializers
from apps.audit.models import AuditLogEntry


class AuditLogEntrySerializer(serializers.ModelSerializer):
    """Read-only representation of an audit entry."""

    class Meta:
        model = AuditLogEntry
        fields = [
            'id', 'user_id', 'user_name', 'action', 'resource', 'resource_type',
            'status', 'changes', 'error_message', 'ip_address', 'user_agent',
            'method', 'request_id', 'timestamp'
        ]
        read_only_fields = fields


class ActionCountSerializer(serializers.Serializer):
    action = serializers.CharField()
    count = serializers.IntegerField()


class UserCountSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()
    user_name = serializers.CharField()
    count = serializers.IntegerField()


class ErrorCountSerializer(serializers.Serializer):
    action = serializers.CharField()
    error = serializers.CharField()
    count = serializers.IntegerField()


class AuditStatsSerializer(serializers.Serializer):
    """Shape of GET /v1/admin/audit-logs/stats, used for the schema."""

    total_actions = serializers.IntegerField()
    success_rate = serializers.FloatField()
    top_actions = ActionCountSerializer(many=True)
    top_users = UserCountSerializer(many=True)
    recent_errors = ErrorCountSerializer(many=True)
    today_actions = serializers.IntegerField()
    yesterday_actions = serializers.IntegerField()
    change_percent = serializers.FloatField()
