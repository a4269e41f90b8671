"""
Permission helpers for tasks app.

Role-based access control for task operations:
- Admin / Superadmin: Full access to all tasks
- User: Acts on tasks they currently own; may roll back tasks escalated
  away from them
"""


def _is_admin(user):
    return user.is_authenticated and user.is_admin()


# =============================================================================
# View Permissions
# =============================================================================

def can_view_task(user, task):
    """
    Check if user can view a specific task.

    Rules:
    - Admin: Can view all tasks
    - User: Tasks they own, created, escalated, or owned before escalation
    """
    if not user.is_authenticated:
        return False

    if user.is_admin():
        return True

    return user.pk in (
        task.user_id, task.created_by_id,
        task.original_user_id, task.escalated_by_id,
    )


# =============================================================================
# Transition Permissions
# =============================================================================

def can_escalate_task(user, task):
    """
    Check if user can escalate a task.

    Rules:
    - Current owner can delegate their task
    - Admin can escalate any task
    """
    if not user.is_authenticated:
        return False
    return user.is_admin() or task.user_id == user.pk


def can_rollback_task(user, task):
    """
    Check if user can roll back an escalation.

    Rules:
    - Admin can roll back any escalation
    - The delegate (current owner) can hand the task back
    - The original owner can take the task back
    """
    if not user.is_authenticated:
        return False
    if user.is_admin():
        return True
    return user.pk in (task.user_id, task.original_user_id)


def can_change_status(user, task):
    """
    Check if user can close the task or otherwise change its status.
    """
    if not user.is_authenticated:
        return False
    return user.is_admin() or task.user_id == user.pk


def can_edit_task(user, task):
    """
    Check if user can edit a task's descriptive fields.
    """
    if not user.is_authenticated:
        return False
    return user.is_admin() or task.user_id == user.pk


def can_delete_task(user, task):
    """Hard delete is administrative only."""
    return _is_admin(user)


def can_create_for(user, owner):
    """
    Check if user can create a task owned by owner.

    Rules:
    - Everyone can create tasks for themselves
    - Admin can create tasks for anyone
    """
    if not user.is_authenticated:
        return False
    return owner.pk == user.pk or user.is_admin()


def can_add_progress(user, task):
    """
    Check if user can log progress on a task.

    Rules:
    - Owner or current delegate can log progress
    - Admin can log progress on any task
    """
    if not user.is_authenticated:
        return False
    if user.is_admin():
        return True
    return user.pk in (task.user_id, task.escalated_to_id)
