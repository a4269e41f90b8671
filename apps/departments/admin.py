"""
Admin configuration for departments app.
"""

from django.contrib import admin

from .models import Department


@admin.register(Department)
class DepartmentAdmin(admin.ModelAdmin):
    list_display = ('name', 'task_total', 'task_closed', 'task_escalated', 'created_at')
    search_fields = ('name',)
    readonly_fields = ('created_at', 'updated_at')

    def get_queryset(self, request):
        return super().get_queryset(request).with_task_counts()

    @admin.display(description='Tasks', ordering='task_total')
    def task_total(self, obj):
        return obj.task_total

    @admin.display(description='Closed', ordering='task_closed')
    def task_closed(self, obj):
        return obj.task_closed

    @admin.display(description='Escalated', ordering='task_escalated')
    def task_escalated(self, obj):
        return obj.task_escalated
