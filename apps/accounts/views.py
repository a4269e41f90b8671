"""
Views for accounts app.

Session identity for the JSON API. Authentication itself is Django's
ModelBackend keyed on email; the rest of the project only consumes
request.user and its role.
"""

import json

from django.contrib.auth import login, logout, authenticate
from django.http import JsonResponse
from django.views.decorators.http import require_POST

from .decorators import api_login_required


def _identity(user):
    return {
        'id': user.pk,
        'name': user.get_full_name(),
        'email': user.email,
        'role': user.role,
        'departmentId': user.department_id,
    }


@require_POST
def login_view(request):
    """Log in with email and password, returning the verified identity."""
    try:
        data = json.loads(request.body or b'{}')
    except json.JSONDecodeError:
        return JsonResponse({'error': 'ValidationError', 'message': 'Malformed JSON body.'}, status=400)

    email = (data.get('email') or '').strip()
    password = data.get('password') or ''
    if not email or not password:
        return JsonResponse(
            {'error': 'ValidationError', 'message': 'Email and password are required.'},
            status=400,
        )

    user = authenticate(request, username=email, password=password)
    if user is None:
        return JsonResponse({'error': 'Unauthorized', 'message': 'Invalid email or password.'}, status=401)

    login(request, user)
    return JsonResponse(_identity(user))


@require_POST
@api_login_required
def logout_view(request):
    """Log out the current session."""
    logout(request)
    return JsonResponse({'message': 'Logged out.'})


@api_login_required
def me_view(request):
    """Return the identity attached to the current session."""
    return JsonResponse(_identity(request.user))
