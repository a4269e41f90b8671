"""
Service layer for notifications app.

Email sending functions for task escalation events. Emails are queued on
Django-Q2 after the surrounding transaction commits; the job reloads the
task so it always mails the committed state.
"""

import logging

from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction
from django_q.tasks import async_task

logger = logging.getLogger(__name__)


def send_notification_email(to_email, subject, message, from_email=None):
    """
    Generic email sending function.

    Args:
        to_email: Recipient email address
        subject: Email subject
        message: Plain-text body
        from_email: Sender email (defaults to DEFAULT_FROM_EMAIL)

    Returns:
        True if the message was handed to the backend, False otherwise
    """
    try:
        send_mail(
            subject=subject,
            message=message,
            from_email=from_email or settings.DEFAULT_FROM_EMAIL,
            recipient_list=[to_email],
            fail_silently=False,
        )
    except Exception:
        logger.exception('Failed to send "%s" to %s', subject, to_email)
        return False
    return True


def _load_task(task_id):
    from apps.tasks.models import Task

    try:
        return Task.objects.select_related(
            'user', 'original_user', 'escalated_by'
        ).get(pk=task_id)
    except Task.DoesNotExist:
        logger.warning('Task %s vanished before its notification was sent', task_id)
        return None


def _task_label(task):
    if task.reference_id:
        return f'[{task.reference_id}] {task.description[:60]}'
    return task.description[:60]


# =============================================================================
# Task Notifications
# =============================================================================

def notify_task_escalated(task_id):
    """
    Send notification to the delegate when a task is escalated to them.
    """
    task = _load_task(task_id)
    if task is None or not task.is_escalated:
        return False

    delegate = task.user
    subject = f'Task escalated to you: {_task_label(task)}'
    message = (
        f'Hello {delegate.get_full_name()},\n\n'
        f'{task.escalated_by.get_full_name()} escalated a task to you.\n\n'
        f'Task: {task.description}\n'
        f'Originally owned by: {task.original_user.get_full_name()}\n'
        f'Reason: {task.escalation_reason}\n'
    )
    return send_notification_email(delegate.email, subject, message)


def notify_task_rolled_back(task_id):
    """
    Send notification to the original owner when an escalation is rolled
    back and the task is theirs again.
    """
    task = _load_task(task_id)
    if task is None or task.is_escalated:
        return False

    owner = task.user
    subject = f'Task returned to you: {_task_label(task)}'
    message = (
        f'Hello {owner.get_full_name()},\n\n'
        f'An escalated task has been rolled back and is assigned to you again.\n\n'
        f'Task: {task.description}\n'
    )
    return send_notification_email(owner.email, subject, message)


# =============================================================================
# Queueing
# =============================================================================

def _queue(func_name, task_id):
    if not getattr(settings, 'TASK_EMAIL_NOTIFICATIONS', True):
        return

    def enqueue():
        async_task(f'apps.notifications.services.{func_name}', task_id)

    transaction.on_commit(enqueue)


def queue_escalation_email(task_id):
    _queue('notify_task_escalated', task_id)


def queue_rollback_email(task_id):
    _queue('notify_task_rolled_back', task_id)
