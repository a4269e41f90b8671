"""
URL configuration for daily_tasks project.
"""

from django.contrib import admin
from django.urls import path, include
from django.conf import settings

urlpatterns = [
    path('admin/', admin.site.urls),

    # API
    path('api/auth/', include('apps.accounts.urls', namespace='accounts')),
    path('api/tasks/', include('apps.tasks.urls', namespace='tasks')),
    path('api/kpi/', include('apps.reports.urls', namespace='reports')),

    # Real-time events
    path('events/', include('apps.notifications.urls', namespace='notifications')),
]

if settings.DEBUG and 'debug_toolbar' in settings.INSTALLED_APPS:
    import debug_toolbar
    urlpatterns = [
        path('__debug__/', include(debug_toolbar.urls)),
    ] + urlpatterns

# Admin site customization
admin.site.site_header = 'Daily Tasks Administration'
admin.site.site_title = 'Daily Tasks Admin'
admin.site.index_title = 'Welcome to Daily Tasks Admin'
