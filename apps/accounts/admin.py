"""
Admin configuration for accounts app.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.html import format_html

from .models import User

ROLE_COLORS = {
    User.Role.SUPERADMIN: '#7C3AED',
    User.Role.ADMIN: '#2563EB',
    User.Role.USER: '#059669',
}


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Users with their role, department and current task load."""

    list_display = (
        'email', 'name', 'role_display', 'department',
        'open_tasks', 'delegated_tasks', 'is_active',
    )
    list_filter = ('role', 'department', 'is_active')
    search_fields = ('email', 'name')
    ordering = ('name', 'email')
    list_select_related = ('department',)

    fieldsets = (
        (None, {'fields': ('email', 'password', 'name')}),
        ('Role', {'fields': ('role', 'department', 'is_active')}),
        ('Django admin access', {
            'fields': ('is_staff', 'is_superuser', 'groups', 'user_permissions'),
            'classes': ('collapse',),
        }),
        ('Dates', {'fields': ('last_login', 'created_at', 'updated_at')}),
    )
    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('email', 'name', 'role', 'department', 'password1', 'password2'),
        }),
    )
    readonly_fields = ('last_login', 'created_at', 'updated_at')
    actions = ['deactivate_users']

    def get_queryset(self, request):
        return super().get_queryset(request).with_task_load()

    @admin.display(description='Role', ordering='role')
    def role_display(self, obj):
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            ROLE_COLORS.get(obj.role, '#6B7280'),
            obj.get_role_display(),
        )

    @admin.display(description='Open', ordering='open_tasks')
    def open_tasks(self, obj):
        return obj.open_tasks

    @admin.display(description='Delegated', ordering='delegated_tasks')
    def delegated_tasks(self, obj):
        return obj.delegated_tasks

    @admin.action(description='Deactivate selected users')
    def deactivate_users(self, request, queryset):
        # Deactivated users can no longer receive escalations
        count = queryset.update(is_active=False)
        self.message_user(request, f'{count} user(s) deactivated.')
