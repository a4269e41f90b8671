"""
JSON representations of tasks.

Relational fields are emitted twice: the plain id (``userId``) that the
core reasons about, and an expanded ``{id, name, email}`` record
(``user``) for display. Clients must treat the record as optional.
"""


def user_ref(user):
    """Expanded user record, or None."""
    if user is None:
        return None
    return {
        'id': user.pk,
        'name': user.get_full_name(),
        'email': user.email,
    }


def _isoformat(value):
    return value.isoformat() if value is not None else None


def serialize_task(task):
    """Full wire representation of a task."""
    return {
        'id': task.pk,
        'task': task.description,
        'srId': task.reference_id,
        'remarks': task.remarks,
        'status': task.status,
        'date': _isoformat(task.date),
        'tags': list(task.tags or []),
        'attachments': list(task.attachments or []),
        'departmentId': task.department_id,
        'department': (
            {'id': task.department.pk, 'name': task.department.name}
            if task.department_id else None
        ),
        'userId': task.user_id,
        'user': user_ref(task.user),
        'createdById': task.created_by_id,
        'createdBy': user_ref(task.created_by),
        'isEscalated': task.is_escalated,
        'originalUserId': task.original_user_id,
        'originalUser': user_ref(task.original_user),
        'escalatedToId': task.escalated_to_id,
        'escalatedTo': user_ref(task.escalated_to),
        'escalatedById': task.escalated_by_id,
        'escalatedBy': user_ref(task.escalated_by),
        'escalatedAt': _isoformat(task.escalated_at),
        'escalationReason': task.escalation_reason,
        'closedAt': _isoformat(task.closed_at),
        'createdAt': _isoformat(task.created_at),
        'updatedAt': _isoformat(task.updated_at),
        'version': task.version,
    }


def serialize_progress(progress):
    return {
        'id': progress.pk,
        'taskId': progress.task_id,
        'date': _isoformat(progress.date),
        'progressDescription': progress.description,
        'userId': progress.user_id,
        'user': user_ref(progress.user),
        'createdAt': _isoformat(progress.created_at),
    }
