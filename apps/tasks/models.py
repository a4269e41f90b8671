"""
Task tracking models.

Models:
- Task: Daily work item with ownership and escalation tracking
- Progress: Dated progress notes logged against a task
"""

from django.db import models
from django.db.models import F, Q
from django.conf import settings
from django.utils import timezone


def normalize_reference_id(value):
    """External reference ids are compared case-insensitively; store them upper-cased."""
    if value is None:
        return None
    value = str(value).strip().upper()
    return value or None


class Task(models.Model):
    """
    Daily task model.

    Ownership:
    - user: the party currently accountable for the task
    - created_by: immutable creator
    - original_user: owner before the active escalation (null when unescalated)

    State machine:
    - Unescalated(open) → Escalated(open) via escalate
    - Escalated(open) → Escalated(open) via re-escalate
    - Escalated(open) → Unescalated(open) via rollback
    - either open state → Closed via close (terminal)
    """

    class Status(models.TextChoices):
        IN_PROGRESS = 'in-progress', 'In Progress'
        CLOSED = 'closed', 'Closed'

    class State(models.TextChoices):
        UNESCALATED = 'unescalated', 'Unescalated'
        ESCALATED = 'escalated', 'Escalated'
        CLOSED = 'closed', 'Closed'

    # Core fields
    description = models.TextField(help_text='What was worked on')
    reference_id = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        db_index=True,
        help_text='Optional external reference (service request id)'
    )
    remarks = models.TextField()
    status = models.CharField(
        max_length=15,
        choices=Status.choices,
        default=Status.IN_PROGRESS,
        db_index=True,
    )
    date = models.DateField(
        default=timezone.localdate,
        db_index=True,
        help_text='Work date (distinct from creation time)'
    )
    tags = models.JSONField(default=list, blank=True)
    attachments = models.JSONField(
        default=list,
        blank=True,
        help_text='File descriptors managed by the upload collaborator'
    )

    # Relationships
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='owned_tasks',
        help_text='Current owner (delegate while escalated)'
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='created_tasks',
        editable=False,
    )
    department = models.ForeignKey(
        'departments.Department',
        on_delete=models.PROTECT,
        related_name='tasks',
    )

    # Escalation tracking
    is_escalated = models.BooleanField(default=False)
    original_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='escalated_away_tasks',
        help_text='Owner before the active escalation'
    )
    escalated_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='escalated_to_tasks',
    )
    escalated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='escalated_by_tasks',
    )
    escalated_at = models.DateTimeField(null=True, blank=True)
    escalation_reason = models.TextField(null=True, blank=True)

    # Timestamps
    closed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Bumped on every committed mutation (compare-and-set stamp)
    version = models.PositiveIntegerField(default=1, editable=False)

    class Meta:
        verbose_name = 'task'
        verbose_name_plural = 'tasks'
        ordering = ['-date', '-created_at']
        indexes = [
            models.Index(fields=['user', 'date'], name='task_user_date_idx'),
            models.Index(fields=['department', 'date'], name='task_department_date_idx'),
            models.Index(fields=['status', 'date'], name='task_status_date_idx'),
            models.Index(fields=['escalated_to', 'is_escalated'], name='task_escalated_to_idx'),
            models.Index(fields=['original_user', 'is_escalated'], name='task_original_user_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(status='closed', closed_at__isnull=False)
                    | Q(status='in-progress', closed_at__isnull=True)
                ),
                name='task_closed_at_matches_status',
            ),
            models.CheckConstraint(
                condition=(
                    Q(
                        is_escalated=True,
                        original_user__isnull=False,
                        escalated_to__isnull=False,
                        escalated_by__isnull=False,
                        escalated_at__isnull=False,
                    )
                    | Q(
                        is_escalated=False,
                        original_user__isnull=True,
                        escalated_to__isnull=True,
                        escalated_by__isnull=True,
                        escalated_at__isnull=True,
                    )
                ),
                name='task_escalation_fields_consistent',
            ),
            models.CheckConstraint(
                condition=Q(original_user__isnull=True) | ~Q(original_user=F('user')),
                name='task_original_user_not_owner',
            ),
        ]

    def __str__(self):
        return f"#{self.pk} {self.description[:40]}"

    def save(self, *args, **kwargs):
        self.reference_id = normalize_reference_id(self.reference_id)
        super().save(*args, **kwargs)

    # ==========================================================================
    # State Properties
    # ==========================================================================

    @property
    def is_closed(self):
        return self.status == self.Status.CLOSED

    @property
    def is_open(self):
        return self.status == self.Status.IN_PROGRESS

    @property
    def state(self):
        """Current node of the ownership state machine."""
        if self.is_closed:
            return self.State.CLOSED
        if self.is_escalated:
            return self.State.ESCALATED
        return self.State.UNESCALATED

    def invariant_violations(self):
        """
        Return a list of human-readable invariant violations (empty when valid).

        Mirrors the database constraints and adds the ones a CHECK
        constraint cannot express.
        """
        problems = []
        if self.is_closed != (self.closed_at is not None):
            problems.append('closed_at must be set iff status is closed')

        escalation_fields = [
            self.original_user_id, self.escalated_to_id,
            self.escalated_by_id, self.escalated_at,
        ]
        if self.is_escalated and any(value is None for value in escalation_fields):
            problems.append('escalated task is missing escalation attributes')
        if not self.is_escalated and any(value is not None for value in escalation_fields):
            problems.append('unescalated task carries escalation attributes')
        if not self.is_escalated and self.escalation_reason:
            problems.append('unescalated task carries an escalation reason')

        if self.original_user_id is not None and self.original_user_id == self.user_id:
            problems.append('original_user must differ from user')
        if self.is_escalated and self.escalated_to_id != self.user_id:
            problems.append('escalated task must be owned by its delegate')
        return problems


class Progress(models.Model):
    """
    Progress note logged against a task.

    Displayed newest first. Progress logged by a delegate blocks rollback
    of the escalation that handed them the task.
    """

    task = models.ForeignKey(
        Task,
        on_delete=models.CASCADE,
        related_name='progress_entries',
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='task_progress',
    )
    date = models.DateField(default=timezone.localdate)
    description = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'progress entry'
        verbose_name_plural = 'progress entries'
        ordering = ['-date', '-created_at']
        indexes = [
            models.Index(fields=['task', 'date'], name='progress_task_date_idx'),
        ]

    def __str__(self):
        return f"Progress by {self.user} on task #{self.task_id}"
