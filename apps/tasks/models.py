"""
Task model.

Tasks belong to the user who created them and are removed with that user.
"""
from django.db import models
from apps.core.models import BaseModel


class TaskQuerySet(models.QuerySet):

    def owned_by(self, user):
        return self.filter(owner=user)

    def completed(self):
        return self.filter(completed=True)

    def pending(self):
        return self.filter(completed=False)


class Task(BaseModel):
    """A to-do item owned by one user."""

    owner = models.ForeignKey(
        'rbac.User',
        on_delete=models.CASCADE,
        related_name='tasks',
        help_text="User who owns the task"
    )
    title = models.CharField(
        max_length=200,
        help_text="Short task title"
    )
    description = models.TextField(
        blank=True,
        default='',
        help_text="Optional details"
    )
    completed = models.BooleanField(
        default=False,
        db_index=True
    )

    objects = TaskQuerySet.as_manager()

    class Meta:
        db_table = 'tasks'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['owner', 'completed'], name='tasks_owner_completed_idx'),
        ]

    def __str__(self):
        return self.title
