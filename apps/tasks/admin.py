"""
Admin configuration for tasks app.

Ownership, escalation and status fields are read-only here; they only
change through the service-layer transitions.
"""

from django.contrib import admin
from django.utils.html import format_html
from .models import Task, Progress


class ProgressInline(admin.TabularInline):
    """Inline admin for progress notes on task detail."""
    model = Progress
    extra = 0
    readonly_fields = ('user', 'date', 'description', 'created_at')
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Task)
class TaskAdmin(admin.ModelAdmin):
    """Admin for Task model."""

    list_display = (
        'id', 'reference_id', 'description_preview', 'user', 'department',
        'status_display', 'escalation_display', 'date', 'version'
    )
    list_filter = ('status', 'is_escalated', 'department', 'date')
    search_fields = ('reference_id', 'description', 'remarks', 'user__name', 'user__email')
    ordering = ('-date', '-created_at')
    date_hierarchy = 'date'

    readonly_fields = (
        'user', 'created_by', 'status', 'is_escalated', 'original_user',
        'escalated_to', 'escalated_by', 'escalated_at', 'escalation_reason',
        'closed_at', 'version', 'created_at', 'updated_at'
    )

    fieldsets = (
        (None, {
            'fields': ('description', 'reference_id', 'remarks', 'date', 'department')
        }),
        ('Ownership', {
            'fields': ('user', 'created_by', 'status', 'closed_at')
        }),
        ('Escalation', {
            'fields': (
                'is_escalated', 'original_user', 'escalated_to',
                'escalated_by', 'escalated_at', 'escalation_reason'
            ),
            'classes': ('collapse',),
        }),
        ('Extras', {
            'fields': ('tags', 'attachments'),
            'classes': ('collapse',),
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at', 'version'),
            'classes': ('collapse',),
        }),
    )

    inlines = [ProgressInline]

    def get_queryset(self, request):
        """Optimize with select_related."""
        return super().get_queryset(request).select_related(
            'user', 'created_by', 'department', 'original_user'
        )

    def description_preview(self, obj):
        return obj.description[:60] + '...' if len(obj.description) > 60 else obj.description
    description_preview.short_description = 'Task'

    def status_display(self, obj):
        """Display status with color coding."""
        colors = {
            'in-progress': '#3498db',  # Blue
            'closed': '#27ae60',       # Green
        }
        color = colors.get(obj.status, '#000')
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            color, obj.get_status_display()
        )
    status_display.short_description = 'Status'
    status_display.admin_order_field = 'status'

    def escalation_display(self, obj):
        """Show who the task was escalated away from."""
        if not obj.is_escalated:
            return ''
        return format_html(
            '<span style="color: #e67e22;">from {}</span>',
            obj.original_user.get_full_name()
        )
    escalation_display.short_description = 'Escalated'


@admin.register(Progress)
class ProgressAdmin(admin.ModelAdmin):
    """Admin for Progress model."""

    list_display = ('task', 'user', 'date', 'description_preview', 'created_at')
    list_filter = ('date', 'user')
    search_fields = ('description', 'task__reference_id', 'task__description')
    ordering = ('-date', '-created_at')

    readonly_fields = ('task', 'user', 'created_at')

    def description_preview(self, obj):
        """Show truncated description."""
        return obj.description[:50] + '...' if len(obj.description) > 50 else obj.description
    description_preview.short_description = 'Progress'
