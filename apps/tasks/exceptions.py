"""
Error taxonomy for task operations.

Services raise these; views translate them into JSON responses with
error_response(). Each category maps to one HTTP status so callers can
tell them apart without parsing messages.
"""

from django.core.exceptions import ObjectDoesNotExist, PermissionDenied
from django.http import JsonResponse


class TaskError(Exception):
    """Base class for task-core errors."""

    status_code = 400
    retryable = False

    def __init__(self, message='', **details):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def category(self):
        return type(self).__name__

    def as_dict(self):
        data = {'error': self.category, 'message': self.message}
        if self.details:
            data['details'] = self.details
        if self.retryable:
            data['retryable'] = True
        return data


class NotFound(TaskError, ObjectDoesNotExist):
    """Missing task or user."""
    status_code = 404


class InvalidState(TaskError):
    """Transition not legal from the task's current state."""
    status_code = 409


class Forbidden(TaskError, PermissionDenied):
    """Caller is neither the accountable owner nor an administrator."""
    status_code = 403


class InvalidWindow(TaskError):
    """Malformed or inconsistent KPI time-window filter."""
    status_code = 400


class Conflict(TaskError):
    """A concurrent mutation on the same task won the race."""
    status_code = 409
    retryable = True


def error_response(exc):
    """Build the JSON response for a TaskError."""
    return JsonResponse(exc.as_dict(), status=exc.status_code)
