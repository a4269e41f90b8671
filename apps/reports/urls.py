"""
URL configuration for reports app.

KPI endpoints mounted under /api/kpi/.
"""

from django.urls import path
from . import views

app_name = 'reports'

urlpatterns = [
    path('user/<int:user_id>/', views.user_kpi, name='user_kpi'),
    path('all/', views.all_users_kpi, name='all_users_kpi'),
    path('stats/', views.overall_stats, name='overall_stats'),
]
