"""
Permission decorators for the JSON API.

The API answers anonymous callers with a 401 JSON body instead of the
login redirect that django.contrib.auth.decorators.login_required issues.
"""

from functools import wraps

from django.http import JsonResponse


def api_login_required(view_func):
    """Require an authenticated session; respond 401 otherwise."""
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse(
                {'error': 'Unauthorized', 'message': 'Authentication required.'},
                status=401,
            )
        return view_func(request, *args, **kwargs)
    return wrapper
