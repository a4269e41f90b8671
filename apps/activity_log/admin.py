"""
Admin configuration for activity_log app.

The audit trail is append-only: entries are written by the task services
and can only be browsed here.
"""

from django.contrib import admin
from django.utils.html import format_html

from .models import TaskActivity

ACTION_COLORS = {
    TaskActivity.ActionType.CREATED: '#28a745',
    TaskActivity.ActionType.UPDATED: '#6c757d',
    TaskActivity.ActionType.STATUS_CHANGED: '#007bff',
    TaskActivity.ActionType.ESCALATED: '#dc3545',
    TaskActivity.ActionType.ROLLED_BACK: '#fd7e14',
    TaskActivity.ActionType.PROGRESS_ADDED: '#17a2b8',
}

# Actions whose old/new values are user primary keys
OWNERSHIP_ACTIONS = (
    TaskActivity.ActionType.ESCALATED,
    TaskActivity.ActionType.ROLLED_BACK,
)


@admin.register(TaskActivity)
class TaskActivityAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'task', 'user', 'action_display', 'change_display')
    list_filter = ('action_type', 'created_at')
    search_fields = ('task__description', 'task__reference_id', 'description', 'user__email', 'user__name')
    list_select_related = ('task', 'user')
    ordering = ('-created_at',)
    date_hierarchy = 'created_at'
    readonly_fields = [field.name for field in TaskActivity._meta.fields]

    @admin.display(description='Action', ordering='action_type')
    def action_display(self, obj):
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            ACTION_COLORS.get(obj.action_type, '#6c757d'),
            obj.get_action_type_display(),
        )

    @admin.display(description='Change')
    def change_display(self, obj):
        """Show old -> new, labelling owner handoffs explicitly."""
        if obj.old_value is None and obj.new_value is None:
            return obj.description
        if obj.action_type in OWNERSHIP_ACTIONS:
            return f"owner #{obj.old_value} → #{obj.new_value}"
        return f"{obj.field_name}: {obj.old_value} → {obj.new_value}"

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
