"""
Departments group users and their daily tasks for reporting.

A task is filed under its owner's department when it is logged and keeps
that department through escalations and rollbacks.
"""

from django.db import models
from django.db.models import Count, Q


class DepartmentQuerySet(models.QuerySet):

    def with_task_counts(self):
        """Annotate all-time task_total, task_closed and task_escalated."""
        return self.annotate(
            task_total=Count('tasks', distinct=True),
            task_closed=Count('tasks', filter=Q(tasks__status='closed'), distinct=True),
            task_escalated=Count('tasks', filter=Q(tasks__is_escalated=True), distinct=True),
        )


class Department(models.Model):
    name = models.CharField(max_length=100, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = DepartmentQuerySet.as_manager()

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name
