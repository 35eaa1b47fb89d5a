"""
Audit log model.

Every authenticated request that reaches the API produces one immutable
AuditLogEntry. Entries reference users by id only, so they survive user
deletion.
"""
import uuid
from django.db import models
from django.utils import timezone


class AuditStatus(models.TextChoices):
    SUCCESS = 'success', 'Success'
    ERROR = 'error', 'Error'


class ResourceType(models.TextChoices):
    TASK = 'task', 'Task'
    USER = 'user', 'User'
    ROLE = 'role', 'Role'
    PERMISSION = 'permission', 'Permission'
    AUDIT = 'audit', 'Audit'
    REPORT = 'report', 'Report'
    SYSTEM = 'system', 'System'
    OTHER = 'other', 'Other'


class AuditLogImmutableError(Exception):
    """Raised on any attempt to modify or delete an audit entry."""


class AuditLogQuerySet(models.QuerySet):

    def update(self, **kwargs):
        raise AuditLogImmutableError("Audit log entries cannot be updated")

    def delete(self):
        raise AuditLogImmutableError("Audit log entries cannot be deleted")

    def for_user(self, user_id):
        return self.filter(user_id=user_id)

    def by_action(self, action):
        return self.filter(action=action)

    def errors(self):
        return self.filter(status=AuditStatus.ERROR)

    def between(self, start=None, end=None):
        queryset = self
        if start:
            queryset = queryset.filter(timestamp__gte=start)
        if end:
            queryset = queryset.filter(timestamp__lte=end)
        return queryset


class AuditLogEntry(models.Model):
    """
    Append-only record of one observed request outcome.

    ``user_id`` is a plain column rather than a foreign key and
    ``user_name`` is a snapshot taken when the request ran.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False
    )
    user_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Acting user (null for anonymous attempts)"
    )
    user_name = models.CharField(
        max_length=150,
        blank=True,
        default='Anonymous',
        help_text="Name of the acting user at the time of the request"
    )
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action label in 'resource:verb' form (e.g., 'roles:create')"
    )
    resource = models.CharField(
        max_length=500,
        db_index=True,
        help_text="Request path acted upon"
    )
    resource_type = models.CharField(
        max_length=20,
        choices=ResourceType.choices,
        default=ResourceType.OTHER,
        db_index=True
    )
    status = models.CharField(
        max_length=10,
        choices=AuditStatus.choices,
        db_index=True
    )
    changes = models.JSONField(
        default=dict,
        blank=True,
        help_text="Field changes rendered as 'old → new'"
    )
    error_message = models.TextField(blank=True, default='')
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True, default='')
    method = models.CharField(max_length=10, blank=True, default='')
    request_id = models.CharField(
        max_length=64,
        blank=True,
        default='',
        db_index=True,
        help_text="Request ID for tracing"
    )
    timestamp = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the entry was written"
    )

    objects = AuditLogQuerySet.as_manager()

    class Meta:
        db_table = 'audit_log_entries'
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['user_id', '-timestamp'], name='audit_user_ts_idx'),
            models.Index(fields=['action', '-timestamp'], name='audit_action_ts_idx'),
            models.Index(fields=['status', '-timestamp'], name='audit_status_ts_idx'),
        ]

    def __str__(self):
        return f"{self.action} by {self.user_name} ({self.status}) at {self.timestamp}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise AuditLogImmutableError("Audit log entries cannot be updated")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise AuditLogImmutableError("Audit log entries cannot be deleted")
