"""
Service layer for tasks app.

All business logic for task operations is centralized here so views,
the admin and management scripts go through the same state machine.

Services:
- create_task: Create a new in-progress, unescalated task
- update_task: Update descriptive fields with activity logging
- update_task_status / close_task: Close a task (terminal)
- escalate_task: Delegate a task to another user
- rollback_task: Return an escalated task to its original owner
- delete_task: Administrative hard delete
- add_progress / get_progress: Progress notes

Every mutation locks the task row, validates against the locked state and
commits with a compare-and-set on Task.version. Events are published only
after the transaction commits.
"""

import logging
from contextlib import contextmanager
from datetime import date as date_cls

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import OperationalError, transaction
from django.db.models import F
from django.utils import timezone
from django.utils.dateparse import parse_date

from apps.activity_log.models import log_task_activity, log_field_changes, TaskActivity
from apps.departments.models import Department
from apps.notifications import realtime
from apps.notifications.services import queue_escalation_email, queue_rollback_email
from .exceptions import NotFound, InvalidState, Forbidden, Conflict
from .models import Task, Progress, normalize_reference_id
from .permissions import (
    can_escalate_task, can_rollback_task, can_change_status, can_edit_task,
    can_delete_task, can_create_for, can_add_progress, can_view_task,
)

logger = logging.getLogger(__name__)

User = get_user_model()

TASK_RELATED_FIELDS = (
    'user', 'created_by', 'department',
    'original_user', 'escalated_to', 'escalated_by',
)

EDITABLE_FIELDS = ['description', 'reference_id', 'remarks', 'date', 'tags', 'attachments']

DEFAULT_ESCALATION_REASON = 'No reason provided'


# =============================================================================
# Task Store Access
# =============================================================================

def get_task(task_id):
    """Fetch a task with its related records, raising NotFound."""
    try:
        return Task.objects.select_related(*TASK_RELATED_FIELDS).get(pk=task_id)
    except (Task.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"Task {task_id} not found.", task_id=task_id)


def get_user(user_id):
    """Fetch a user by id, raising NotFound."""
    try:
        return User.objects.select_related('department').get(pk=user_id)
    except (User.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"User {user_id} not found.", user_id=user_id)


def _lock_task(task_id, expected_version=None):
    """
    Lock the task row for the rest of the surrounding transaction.

    Must be called inside _task_transaction().
    """
    try:
        task = Task.objects.select_for_update().get(pk=task_id)
    except (Task.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"Task {task_id} not found.", task_id=task_id)

    if expected_version is not None and task.version != int(expected_version):
        logger.warning(
            'Stale version for task %s: expected %s, found %s',
            task.pk, expected_version, task.version
        )
        raise Conflict(
            "Task was modified by someone else. Reload and try again.",
            task_id=task.pk, expected_version=int(expected_version), current_version=task.version,
        )
    return task


def _commit(task, **values):
    """
    Write values with a compare-and-set on the version the caller read.

    Returns the freshly loaded task. Raises Conflict when another writer
    committed first.
    """
    updated = Task.objects.filter(pk=task.pk, version=task.version).update(
        version=F('version') + 1,
        updated_at=timezone.now(),
        **values
    )
    if not updated:
        logger.warning('Lost update race on task %s (version %s)', task.pk, task.version)
        raise Conflict(
            "Task was modified concurrently. Reload and try again.",
            task_id=task.pk,
        )
    return get_task(task.pk)


# Driver messages for a row or table held by another transaction
LOCK_CONTENTION_MARKERS = ('locked', 'deadlock', 'could not obtain lock', 'could not serialize')


@contextmanager
def _task_transaction(task_id):
    """
    Run a task mutation atomically.

    Losing a lock race to a concurrent writer surfaces as Conflict; other
    database errors propagate unchanged.
    """
    try:
        with transaction.atomic():
            yield
    except OperationalError as exc:
        message = str(exc).lower()
        if not any(marker in message for marker in LOCK_CONTENTION_MARKERS):
            raise
        logger.warning('Lock contention on task %s: %s', task_id, exc)
        raise Conflict(
            "Task is being modified by someone else. Reload and try again.",
            task_id=task_id,
        ) from exc


def _publisher(publisher):
    return publisher if publisher is not None else realtime.get_publisher()


def _coerce_date(value, field='date'):
    if value is None or isinstance(value, date_cls):
        return value
    parsed = parse_date(str(value)[:10]) if value else None
    if parsed is None:
        raise ValidationError(f"Invalid {field}: {value!r}. Use YYYY-MM-DD.")
    return parsed


def _clean_tags(tags):
    if tags is None:
        return []
    if not isinstance(tags, (list, tuple)) or not all(isinstance(tag, str) for tag in tags):
        raise ValidationError("Tags must be a list of strings.")
    return [tag.strip() for tag in tags if tag.strip()]


def _clean_attachments(attachments):
    if attachments is None:
        return []
    if not isinstance(attachments, (list, tuple)) or not all(isinstance(item, dict) for item in attachments):
        raise ValidationError("Attachments must be a list of file descriptors.")
    return list(attachments)


def _clean_text(value, label, required=True):
    value = (value or '').strip()
    if required and not value:
        raise ValidationError(f"{label} is required.")
    return value


# =============================================================================
# Create / Update / Delete
# =============================================================================

def create_task(
    user,
    description: str,
    remarks: str,
    reference_id: str = None,
    date=None,
    tags=None,
    attachments=None,
    owner=None,
    publisher=None,
):
    """
    Central task creation function.

    Args:
        user: Authenticated user creating the task
        description: What was worked on (required)
        remarks: Remarks (required)
        reference_id: Optional external reference id (normalized upper-case)
        date: Work date (defaults to today)
        tags: List of strings
        attachments: List of file descriptors
        owner: Owner if different from the creator (admins only)

    Returns:
        Created Task instance

    Raises:
        Forbidden: If a non-admin creates a task for someone else
        ValidationError: If required fields are missing or no department applies
    """
    description = _clean_text(description, 'Task description')
    remarks = _clean_text(remarks, 'Remarks')
    owner = owner or user

    if not can_create_for(user, owner):
        raise Forbidden("Only administrators can create tasks for other users.")

    if not owner.is_active:
        raise ValidationError("Cannot assign task to inactive user.")

    department = owner.department
    if department is None:
        if not owner.is_superadmin():
            raise ValidationError(
                f"User {owner.get_full_name()} must be assigned to a department to log daily tasks."
            )
        department = Department.objects.order_by('pk').first()
        if department is None:
            raise ValidationError("No departments available. Please create a department first.")

    publisher = _publisher(publisher)

    with transaction.atomic():
        task = Task.objects.create(
            description=description,
            remarks=remarks,
            reference_id=normalize_reference_id(reference_id),
            date=_coerce_date(date) or timezone.localdate(),
            tags=_clean_tags(tags),
            attachments=_clean_attachments(attachments),
            user=owner,
            created_by=user,
            department=department,
            status=Task.Status.IN_PROGRESS,
        )

        if owner.pk == user.pk:
            description_text = 'Task created'
        else:
            description_text = f'Task created for {owner.get_full_name()}'
        log_task_activity(
            task=task,
            user=user,
            action_type=TaskActivity.ActionType.CREATED,
            description=description_text
        )

        task = get_task(task.pk)
        publisher.task_event(realtime.TASK_CREATED, task)

    logger.info('Task %s created by user %s for user %s', task.pk, user.pk, owner.pk)
    return task


def update_task(task_id, user, fields, expected_version=None, publisher=None):
    """
    Update descriptive task fields with activity logging.

    fields maps editable field names to their new values.

    Ownership, escalation and status fields are not editable here; they
    only change through the state-machine operations below.

    Raises:
        NotFound: If the task does not exist
        Forbidden: If user is neither owner nor admin, or a non-admin
            moves the work date away from today
        InvalidState: If the task is closed
        Conflict: If expected_version is stale
        ValidationError: If a field is unknown or invalid
    """
    fields = dict(fields or {})
    unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(unknown)}")

    cleaners = {
        'description': lambda v: _clean_text(v, 'Task description'),
        'remarks': lambda v: _clean_text(v, 'Remarks'),
        'reference_id': normalize_reference_id,
        'date': lambda v: _coerce_date(v) or timezone.localdate(),
        'tags': _clean_tags,
        'attachments': _clean_attachments,
    }
    publisher = _publisher(publisher)

    with _task_transaction(task_id):
        task = _lock_task(task_id, expected_version)

        if not can_edit_task(user, task):
            raise Forbidden("You don't have permission to edit this task.")

        if task.is_closed:
            raise InvalidState("Closed tasks cannot be edited.", task_id=task.pk, state=task.state)

        changes = {}
        for field in EDITABLE_FIELDS:
            if field not in fields:
                continue
            new_value = cleaners[field](fields[field])
            old_value = getattr(task, field)
            if old_value != new_value:
                changes[field] = (old_value, new_value)

        if 'date' in changes and not user.is_admin():
            if changes['date'][1] != timezone.localdate():
                raise Forbidden(
                    "Regular users can only move tasks to today's date. "
                    "Please contact an admin to modify past or future dates."
                )

        if not changes:
            return get_task(task.pk)

        task = _commit(task, **{field: new for field, (old, new) in changes.items()})

        log_field_changes(task, user, changes)

        publisher.task_event(realtime.TASK_UPDATED, task)

    logger.info('Task %s updated by user %s (%s)', task.pk, user.pk, ', '.join(changes))
    return task


def delete_task(task_id, user, publisher=None):
    """
    Administrative hard delete. The task leaves the model entirely.

    Raises:
        NotFound: If the task does not exist
        Forbidden: If user is not an administrator
    """
    publisher = _publisher(publisher)

    with _task_transaction(task_id):
        task = _lock_task(task_id)

        if not can_delete_task(user, task):
            raise Forbidden("Only administrators can delete tasks.")

        affected = realtime.TaskEventPublisher.affected_user_ids(task)
        pk = task.pk
        task.delete()
        publisher.task_deleted(pk, affected)

    logger.info('Task %s deleted by user %s', pk, user.pk)


# =============================================================================
# State Machine Transitions
# =============================================================================

def update_task_status(task_id, user, status, expected_version=None, publisher=None):
    """
    Change task status.

    Workflow Rules:
    - in-progress → closed (sets closed_at, freezes escalation attributes)
    - closed is terminal

    Raises:
        NotFound: If the task does not exist
        Forbidden: If user is neither owner nor admin
        InvalidState: If the task is already closed or already has that status
        Conflict: If expected_version is stale
        ValidationError: If status is not a known value
    """
    if status not in Task.Status.values:
        raise ValidationError(f"Invalid status: {status}")

    publisher = _publisher(publisher)

    with _task_transaction(task_id):
        task = _lock_task(task_id, expected_version)

        if not can_change_status(user, task):
            raise Forbidden("You don't have permission to change this task's status.")

        if task.is_closed:
            raise InvalidState("Task is already closed.", task_id=task.pk, state=task.state)

        if status == Task.Status.IN_PROGRESS:
            raise InvalidState("Task is already in progress.", task_id=task.pk, state=task.state)

        old_status = task.status
        task = _commit(task, status=Task.Status.CLOSED, closed_at=timezone.now())

        log_task_activity(
            task=task,
            user=user,
            action_type=TaskActivity.ActionType.STATUS_CHANGED,
            description=f'Status changed from {Task.Status(old_status).label} to {Task.Status.CLOSED.label}',
            field_name='status',
            old_value=old_status,
            new_value=task.status,
        )

        publisher.task_event(realtime.TASK_STATUS_UPDATED, task)

    logger.info('Task %s closed by user %s', task.pk, user.pk)
    return task


def close_task(task_id, user, expected_version=None, publisher=None):
    """Close a task. Calling it on a closed task raises InvalidState."""
    return update_task_status(
        task_id, user, Task.Status.CLOSED,
        expected_version=expected_version, publisher=publisher,
    )


def escalate_task(task_id, user, target_user_id, reason=None, expected_version=None, publisher=None):
    """
    Escalate (delegate) a task to another user.

    The first escalation records the displaced owner in original_user.
    Re-escalating an escalated task moves it to the new delegate and keeps
    original_user pointing at the pre-escalation owner.

    Raises:
        NotFound: If the task or an active target user does not exist
        Forbidden: If user is neither current owner nor admin
        InvalidState: If the task is closed, the target already owns it or
            the target is the pre-escalation owner
        Conflict: If expected_version is stale or a concurrent write won
    """
    target = get_user(target_user_id)
    if not target.is_active:
        raise NotFound(f"User {target_user_id} not found or inactive.", user_id=target.pk)
    reason = (reason or '').strip() or DEFAULT_ESCALATION_REASON
    publisher = _publisher(publisher)

    with _task_transaction(task_id):
        task = _lock_task(task_id, expected_version)

        if not can_escalate_task(user, task):
            raise Forbidden("Only the task owner or an administrator can escalate this task.")

        if task.is_closed:
            raise InvalidState("Closed tasks cannot be escalated.", task_id=task.pk, state=task.state)

        if target.pk == task.user_id:
            raise InvalidState("Task is already owned by this user.", task_id=task.pk, user_id=target.pk)

        if task.is_escalated and target.pk == task.original_user_id:
            raise InvalidState(
                "Task is escalated away from this user. Roll it back instead.",
                task_id=task.pk, user_id=target.pk,
            )

        previous_owner_id = task.user_id
        original_user_id = task.original_user_id if task.is_escalated else task.user_id

        task = _commit(
            task,
            is_escalated=True,
            original_user_id=original_user_id,
            escalated_to_id=target.pk,
            escalated_by_id=user.pk,
            escalated_at=timezone.now(),
            escalation_reason=reason,
            user_id=target.pk,
        )

        log_task_activity(
            task=task,
            user=user,
            action_type=TaskActivity.ActionType.ESCALATED,
            description=f'Escalated to {target.get_full_name()}: {reason}',
            field_name='user',
            old_value=previous_owner_id,
            new_value=target.pk,
        )

        publisher.task_event(realtime.TASK_ESCALATED, task, extra_user_ids=[previous_owner_id])
        if target.pk != user.pk:
            queue_escalation_email(task.pk)

    logger.info(
        'Task %s escalated by user %s from user %s to user %s',
        task.pk, user.pk, previous_owner_id, target.pk
    )
    return task


def rollback_task(task_id, user, expected_version=None, publisher=None):
    """
    Return an escalated task to its pre-escalation owner and clear all
    escalation attributes.

    Raises:
        NotFound: If the task does not exist
        Forbidden: If user is not the delegate, the original owner or an admin
        InvalidState: If the task is closed, not escalated, or the delegate
            has already logged progress since the escalation
        Conflict: If expected_version is stale or a concurrent write won
    """
    publisher = _publisher(publisher)

    with _task_transaction(task_id):
        task = _lock_task(task_id, expected_version)

        if not can_rollback_task(user, task):
            raise Forbidden("Only the delegate, the original owner or an administrator can roll back this task.")

        if task.is_closed:
            raise InvalidState(
                "Cannot roll back a closed task. The escalated user has finished the work.",
                task_id=task.pk, state=task.state,
            )

        if not task.is_escalated:
            raise InvalidState("Task is not escalated.", task_id=task.pk, state=task.state)

        delegate_progress = Progress.objects.filter(
            task_id=task.pk,
            user_id=task.user_id,
            created_at__gte=task.escalated_at,
        ).count()
        if delegate_progress:
            raise InvalidState(
                f"The escalated user has already added {delegate_progress} progress update(s). "
                "Rollback is not allowed once work has started.",
                task_id=task.pk,
            )

        delegate_id = task.user_id
        original_user_id = task.original_user_id

        task = _commit(
            task,
            user_id=original_user_id,
            is_escalated=False,
            original_user_id=None,
            escalated_to_id=None,
            escalated_by_id=None,
            escalated_at=None,
            escalation_reason=None,
        )

        log_task_activity(
            task=task,
            user=user,
            action_type=TaskActivity.ActionType.ROLLED_BACK,
            description=f'Escalation rolled back to {task.user.get_full_name()}',
            field_name='user',
            old_value=delegate_id,
            new_value=original_user_id,
        )

        publisher.task_event(realtime.TASK_ROLLBACK, task, extra_user_ids=[delegate_id])
        if original_user_id != user.pk:
            queue_rollback_email(task.pk)

    logger.info(
        'Task %s rolled back by user %s from user %s to user %s',
        task.pk, user.pk, delegate_id, original_user_id
    )
    return task


# =============================================================================
# Progress
# =============================================================================

def add_progress(task_id, user, description, date=None, publisher=None):
    """
    Log a progress note on an open task.

    Raises:
        NotFound: If the task does not exist
        Forbidden: If user is neither owner, delegate nor admin
        InvalidState: If the task is closed
        ValidationError: If the description is empty
    """
    from .serializers import serialize_progress

    description = _clean_text(description, 'Progress description')
    publisher = _publisher(publisher)

    with _task_transaction(task_id):
        # Row lock serializes progress against a concurrent rollback
        task = _lock_task(task_id)

        if not can_add_progress(user, task):
            raise Forbidden("Not authorized to update this task.")

        if task.is_closed:
            raise InvalidState("Cannot log progress on a closed task.", task_id=task.pk, state=task.state)

        progress = Progress.objects.create(
            task=task,
            user=user,
            date=_coerce_date(date) or timezone.localdate(),
            description=description,
        )

        log_task_activity(
            task=task,
            user=user,
            action_type=TaskActivity.ActionType.PROGRESS_ADDED,
            description=f'Progress added: "{description[:50]}{"..." if len(description) > 50 else ""}"'
        )

        publisher.after_commit(
            realtime.TASK_PROGRESS_ADDED,
            {'taskId': task.pk, 'progress': serialize_progress(progress)},
            realtime.TaskEventPublisher.affected_user_ids(task),
        )

    return progress


def get_progress(task_id, user=None):
    """Progress history for a task, newest first."""
    task = get_task(task_id)
    if user is not None and not can_view_task(user, task):
        raise Forbidden("You don't have permission to view this task.")
    return list(task.progress_entries.select_related('user'))
