"""
URL configuration for tasks app.

Includes:
- Task CRUD operations
- Status changes and close
- Escalation and rollback
- Progress notes
"""

from django.urls import path
from . import views

app_name = 'tasks'

urlpatterns = [
    # Task CRUD
    path('', views.task_create, name='task_create'),
    path('<int:pk>/', views.task_detail, name='task_detail'),

    # Status changes
    path('<int:pk>/status/', views.task_status, name='task_status'),
    path('<int:pk>/close/', views.task_close, name='task_close'),

    # Escalation
    path('<int:pk>/escalate/', views.task_escalate, name='task_escalate'),
    path('<int:pk>/rollback/', views.task_rollback, name='task_rollback'),

    # Progress
    path('<int:pk>/progress/', views.task_progress, name='task_progress'),
]
