"""
Views for tasks app.

JSON endpoints over the task service layer:
- Task create / read / update / delete
- Status changes and close
- Escalation and rollback
- Progress notes

Views only parse requests and render responses; every rule lives in
services.py. Errors raised by services are translated by task_api_view.
"""

import json
import logging
from functools import wraps

from django.core.exceptions import ValidationError
from django.http import JsonResponse
from django.views.decorators.http import require_http_methods, require_POST

from apps.accounts.decorators import api_login_required
from .exceptions import TaskError, Forbidden, error_response
from .permissions import can_view_task
from .serializers import serialize_task, serialize_progress
from . import services

logger = logging.getLogger(__name__)

# Wire name -> service keyword for editable fields
WIRE_FIELDS = {
    'task': 'description',
    'srId': 'reference_id',
    'remarks': 'remarks',
    'date': 'date',
    'tags': 'tags',
    'attachments': 'attachments',
}


# =============================================================================
# Helpers
# =============================================================================

def validation_error_response(exc):
    return JsonResponse(
        {'error': 'ValidationError', 'message': ' '.join(exc.messages)},
        status=400,
    )


def task_api_view(view_func):
    """Authenticate the caller and translate service errors into JSON."""
    @wraps(view_func)
    @api_login_required
    def wrapper(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except TaskError as exc:
            if exc.retryable:
                logger.info('%s on %s %s: %s', exc.category, request.method, request.path, exc.message)
            return error_response(exc)
        except ValidationError as exc:
            return validation_error_response(exc)
    return wrapper


def parse_body(request):
    """Decode a JSON object body; an empty body is an empty object."""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Malformed JSON body.")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def parse_version(data):
    """Optional compare-and-set version from a request body."""
    version = data.get('version')
    if version is None:
        return None
    try:
        return int(version)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid version: {version!r}")


def task_response(task, status=200):
    return JsonResponse(serialize_task(task), status=status)


# =============================================================================
# Task CRUD
# =============================================================================

@require_POST
@task_api_view
def task_create(request):
    """Create a task for the caller, or for userId when the caller is an admin."""
    data = parse_body(request)

    owner = None
    if data.get('userId') not in (None, '', request.user.pk):
        owner = services.get_user(data['userId'])

    task = services.create_task(
        user=request.user,
        description=data.get('task'),
        remarks=data.get('remarks'),
        reference_id=data.get('srId'),
        date=data.get('date'),
        tags=data.get('tags'),
        attachments=data.get('attachments'),
        owner=owner,
    )
    return task_response(task, status=201)


@require_http_methods(['GET', 'PUT', 'DELETE'])
@task_api_view
def task_detail(request, pk):
    """Read, update or delete one task."""
    if request.method == 'GET':
        task = services.get_task(pk)
        if not can_view_task(request.user, task):
            raise Forbidden("You don't have permission to view this task.")
        return task_response(task)

    if request.method == 'DELETE':
        services.delete_task(pk, request.user)
        return JsonResponse({'message': 'Task deleted successfully.', 'id': pk})

    data = parse_body(request)
    version = parse_version(data)
    unknown = sorted(key for key in data if key != 'version' and key not in WIRE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(unknown)}")
    fields = {
        WIRE_FIELDS[key]: value
        for key, value in data.items()
        if key != 'version'
    }
    task = services.update_task(pk, request.user, fields, expected_version=version)
    return task_response(task)


# =============================================================================
# State Transitions
# =============================================================================

@require_http_methods(['PUT', 'POST'])
@task_api_view
def task_status(request, pk):
    """Change a task's status."""
    data = parse_body(request)
    status = data.get('status')
    if not status:
        raise ValidationError("Status is required.")
    task = services.update_task_status(pk, request.user, status, expected_version=parse_version(data))
    return task_response(task)


@require_POST
@task_api_view
def task_close(request, pk):
    data = parse_body(request)
    task = services.close_task(pk, request.user, expected_version=parse_version(data))
    return task_response(task)


@require_POST
@task_api_view
def task_escalate(request, pk):
    """Escalate a task to escalatedToId."""
    data = parse_body(request)
    target_id = data.get('escalatedToId')
    if target_id in (None, ''):
        raise ValidationError("escalatedToId is required.")
    task = services.escalate_task(
        pk,
        request.user,
        target_id,
        reason=data.get('escalationReason'),
        expected_version=parse_version(data),
    )
    return task_response(task)


@require_POST
@task_api_view
def task_rollback(request, pk):
    data = parse_body(request)
    task = services.rollback_task(pk, request.user, expected_version=parse_version(data))
    return task_response(task)


# =============================================================================
# Progress
# =============================================================================

@require_http_methods(['GET', 'POST'])
@task_api_view
def task_progress(request, pk):
    """List progress notes, or add one."""
    if request.method == 'GET':
        entries = services.get_progress(pk, request.user)
        return JsonResponse({'progress': [serialize_progress(entry) for entry in entries]})

    data = parse_body(request)
    progress = services.add_progress(
        pk,
        request.user,
        data.get('progressDescription') or data.get('description'),
        date=data.get('date'),
    )
    return JsonResponse(serialize_progress(progress), status=201)
