"""
Audit trail for task mutations.

One row is written inside the same transaction as every committed change:
creation, field edits, status changes, escalations, rollbacks and progress
notes. Escalation and rollback rows record the previous and new owner ids
in old_value/new_value, so the ownership history of a task can be replayed
from its activity.
"""

from django.conf import settings
from django.db import models


class TaskActivityQuerySet(models.QuerySet):

    def for_task(self, task_id):
        return self.filter(task_id=task_id).order_by('created_at', 'pk')

    def ownership_changes(self):
        return self.filter(action_type__in=[
            TaskActivity.ActionType.ESCALATED,
            TaskActivity.ActionType.ROLLED_BACK,
        ])


class TaskActivity(models.Model):

    class ActionType(models.TextChoices):
        CREATED = 'created', 'Created'
        UPDATED = 'updated', 'Updated'
        STATUS_CHANGED = 'status_changed', 'Status Changed'
        ESCALATED = 'escalated', 'Escalated'
        ROLLED_BACK = 'rolled_back', 'Rolled Back'
        PROGRESS_ADDED = 'progress_added', 'Progress Added'

    task = models.ForeignKey(
        'tasks.Task',
        on_delete=models.CASCADE,
        related_name='activities',
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='task_activities',
        help_text='User who performed the action',
    )
    action_type = models.CharField(max_length=20, choices=ActionType.choices, db_index=True)
    description = models.TextField()

    field_name = models.CharField(max_length=50, null=True, blank=True)
    old_value = models.TextField(null=True, blank=True)
    new_value = models.TextField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    objects = TaskActivityQuerySet.as_manager()

    class Meta:
        verbose_name_plural = 'task activities'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['task', '-created_at'], name='activity_task_created_idx'),
            models.Index(fields=['user', '-created_at'], name='activity_user_created_idx'),
            models.Index(fields=['action_type', '-created_at'], name='activity_action_created_idx'),
        ]

    def __str__(self):
        return f"Task #{self.task_id}: {self.get_action_type_display()} by {self.user}"


def _as_text(value):
    return None if value is None else str(value)


def log_task_activity(task, user, action_type, description,
                      field_name=None, old_value=None, new_value=None):
    """
    Record one audit row for task.

    Values are stored as text; None stays NULL.
    """
    return TaskActivity.objects.create(
        task=task,
        user=user,
        action_type=action_type,
        description=description,
        field_name=field_name,
        old_value=_as_text(old_value),
        new_value=_as_text(new_value),
    )


def log_field_changes(task, user, changes):
    """Record one UPDATED row per field in changes ({field: (old, new)})."""
    return TaskActivity.objects.bulk_create([
        TaskActivity(
            task=task,
            user=user,
            action_type=TaskActivity.ActionType.UPDATED,
            description=f'{field.replace("_", " ").capitalize()} changed',
            field_name=field,
            old_value=_as_text(old_value),
            new_value=_as_text(new_value),
        )
        for field, (old_value, new_value) in changes.items()
    ])
