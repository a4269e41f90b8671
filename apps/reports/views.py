"""
Views for reports app.

KPI endpoints. Reads require an authenticated session only; the window is
taken from the query string (year, month, dateFrom, dateTo).
"""

from django.http import JsonResponse
from django.views.decorators.http import require_GET

from apps.tasks.views import task_api_view
from . import services


@require_GET
@task_api_view
def user_kpi(request, user_id):
    """KPI snapshot for one user."""
    snapshot = services.get_user_kpi(user_id, request.GET)
    return JsonResponse(snapshot.as_dict())


@require_GET
@task_api_view
def all_users_kpi(request):
    """KPI snapshots for every user with tasks in the window, by name."""
    snapshots = services.get_all_users_kpi(request.GET)
    return JsonResponse({'users': [snapshot.as_dict() for snapshot in snapshots]})


@require_GET
@task_api_view
def overall_stats(request):
    return JsonResponse(services.get_overall_stats(request.GET))
