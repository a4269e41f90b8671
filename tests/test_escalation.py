"""
Tests for the task ownership / escalation state machine.
"""

import threading
from datetime import date, timedelta

import pytest
from django.core.exceptions import PermissionDenied, ValidationError
from django.db import IntegrityError, OperationalError, transaction
from django.utils import timezone

from apps.accounts.models import User
from apps.activity_log.models import TaskActivity
from apps.departments.models import Department
from apps.tasks import services
from apps.tasks.exceptions import Conflict, Forbidden, InvalidState, NotFound
from apps.tasks.models import Progress, Task


# =============================================================================
# Create
# =============================================================================

class TestCreateTask:
    def test_new_task_is_open_and_unescalated(self, make_task, alice, department):
        task = make_task(alice, reference_id='  sr-101 ')

        assert task.status == Task.Status.IN_PROGRESS
        assert task.state == Task.State.UNESCALATED
        assert task.is_escalated is False
        assert task.original_user_id is None
        assert task.user == alice
        assert task.created_by == alice
        assert task.department == department
        assert task.reference_id == 'SR-101'
        assert task.date == timezone.localdate()
        assert task.version == 1
        assert task.invariant_violations() == []

    def test_records_creation_activity(self, make_task, alice):
        task = make_task(alice)
        assert task.activities.filter(action_type=TaskActivity.ActionType.CREATED).count() == 1

    def test_user_cannot_create_for_someone_else(self, make_task, alice, bob):
        with pytest.raises(Forbidden):
            make_task(alice, owner=bob)

    def test_admin_can_create_for_someone_else(self, make_task, admin_user, alice):
        task = make_task(admin_user, owner=alice)
        assert task.user == alice
        assert task.created_by == admin_user

    def test_superadmin_without_department_uses_first_department(self, make_task, make_user, department):
        root = make_user(role=User.Role.SUPERADMIN, dept=None)
        task = make_task(root)
        assert task.department == department

    def test_user_without_department_is_rejected(self, make_task, make_user):
        drifter = make_user(dept=None)
        with pytest.raises(ValidationError):
            make_task(drifter)

    def test_description_is_required(self, make_task, alice):
        with pytest.raises(ValidationError):
            make_task(alice, description='   ')

    def test_tags_must_be_strings(self, make_task, alice):
        with pytest.raises(ValidationError):
            make_task(alice, tags=['ok', 3])


# =============================================================================
# Escalate
# =============================================================================

class TestEscalateTask:
    def test_first_escalation_records_original_owner(self, make_task, publisher, alice, bob):
        task = make_task(alice)

        task = services.escalate_task(task.pk, alice, bob.pk, 'Needs DB access', publisher=publisher)

        assert task.is_escalated is True
        assert task.user == bob
        assert task.original_user == alice
        assert task.escalated_to == bob
        assert task.escalated_by == alice
        assert task.escalated_at is not None
        assert task.escalation_reason == 'Needs DB access'
        assert task.version == 2
        assert task.invariant_violations() == []

    def test_reason_defaults(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        task = services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)
        assert task.escalation_reason == services.DEFAULT_ESCALATION_REASON

    def test_re_escalation_keeps_original_owner(self, make_task, publisher, alice, bob, carol):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)

        task = services.escalate_task(task.pk, bob, carol.pk, 'Out of office', publisher=publisher)

        assert task.user == carol
        assert task.original_user == alice
        assert task.escalated_to == carol
        assert task.escalated_by == bob
        assert task.version == 3
        assert task.invariant_violations() == []

    def test_escalating_to_current_owner_is_invalid(self, make_task, publisher, alice):
        task = make_task(alice)
        with pytest.raises(InvalidState):
            services.escalate_task(task.pk, alice, alice.pk, publisher=publisher)

    def test_escalating_back_to_original_owner_is_invalid(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)

        with pytest.raises(InvalidState):
            services.escalate_task(task.pk, bob, alice.pk, publisher=publisher)

        task.refresh_from_db()
        assert task.original_user == alice
        assert task.user == bob

    def test_closed_task_cannot_be_escalated(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        services.close_task(task.pk, alice, publisher=publisher)
        with pytest.raises(InvalidState):
            services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)

    def test_non_owner_is_forbidden(self, make_task, publisher, alice, bob, carol):
        task = make_task(alice)
        with pytest.raises(Forbidden) as excinfo:
            services.escalate_task(task.pk, carol, bob.pk, publisher=publisher)
        assert isinstance(excinfo.value, PermissionDenied)

    def test_original_owner_cannot_re_escalate(self, make_task, publisher, alice, bob, carol):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)
        with pytest.raises(Forbidden):
            services.escalate_task(task.pk, alice, carol.pk, publisher=publisher)

    def test_admin_can_escalate_any_task(self, make_task, publisher, admin_user, alice, bob):
        task = make_task(alice)
        task = services.escalate_task(task.pk, admin_user, bob.pk, publisher=publisher)
        assert task.escalated_by == admin_user
        assert task.original_user == alice

    def test_missing_target_user(self, make_task, publisher, alice):
        task = make_task(alice)
        with pytest.raises(NotFound):
            services.escalate_task(task.pk, alice, 999999, publisher=publisher)

    def test_inactive_target_user(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        bob.is_active = False
        bob.save()
        with pytest.raises(NotFound):
            services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)

    def test_missing_task(self, publisher, alice, bob):
        with pytest.raises(NotFound):
            services.escalate_task(999999, alice, bob.pk, publisher=publisher)

    def test_logs_escalation_activity(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)
        activity = task.activities.get(action_type=TaskActivity.ActionType.ESCALATED)
        assert activity.old_value == str(alice.pk)
        assert activity.new_value == str(bob.pk)


# =============================================================================
# Rollback
# =============================================================================

class TestRollbackTask:
    def test_rollback_restores_original_owner(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, 'help', publisher=publisher)

        task = services.rollback_task(task.pk, alice, publisher=publisher)

        assert task.user == alice
        assert task.is_escalated is False
        assert task.original_user_id is None
        assert task.escalated_to_id is None
        assert task.escalated_by_id is None
        assert task.escalated_at is None
        assert task.escalation_reason is None
        assert task.state == Task.State.UNESCALATED
        assert task.invariant_violations() == []

    def test_rollback_after_re_escalation_returns_to_first_owner(self, make_task, publisher, alice, bob, carol):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)
        services.escalate_task(task.pk, bob, carol.pk, publisher=publisher)

        task = services.rollback_task(task.pk, carol, publisher=publisher)

        assert task.user == alice

    def test_delegate_can_roll_back(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)
        task = services.rollback_task(task.pk, bob, publisher=publisher)
        assert task.user == alice

    def test_unrelated_user_is_forbidden(self, make_task, publisher, alice, bob, carol):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)
        with pytest.raises(Forbidden):
            services.rollback_task(task.pk, carol, publisher=publisher)

    def test_unescalated_task_cannot_be_rolled_back(self, make_task, publisher, alice):
        task = make_task(alice)
        with pytest.raises(InvalidState):
            services.rollback_task(task.pk, alice, publisher=publisher)

    def test_closed_task_cannot_be_rolled_back(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)
        services.close_task(task.pk, bob, publisher=publisher)

        with pytest.raises(InvalidState):
            services.rollback_task(task.pk, alice, publisher=publisher)

        task.refresh_from_db()
        assert task.is_escalated is True
        assert task.original_user == alice

    def test_rollback_refused_once_delegate_logged_progress(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)
        services.add_progress(task.pk, bob, 'Started the migration', publisher=publisher)

        with pytest.raises(InvalidState):
            services.rollback_task(task.pk, alice, publisher=publisher)

    def test_owner_progress_before_escalation_does_not_block(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        services.add_progress(task.pk, alice, 'Investigated', publisher=publisher)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)

        task = services.rollback_task(task.pk, alice, publisher=publisher)

        assert task.user == alice


# =============================================================================
# Close / Status
# =============================================================================

class TestCloseTask:
    def test_close_sets_closed_at(self, make_task, publisher, alice):
        task = make_task(alice)
        task = services.close_task(task.pk, alice, publisher=publisher)
        assert task.status == Task.Status.CLOSED
        assert task.closed_at is not None
        assert task.state == Task.State.CLOSED

    def test_closing_twice_is_invalid_and_keeps_closed_at(self, make_task, publisher, alice):
        task = make_task(alice)
        task = services.close_task(task.pk, alice, publisher=publisher)
        closed_at = task.closed_at

        with pytest.raises(InvalidState):
            services.close_task(task.pk, alice, publisher=publisher)

        task.refresh_from_db()
        assert task.closed_at == closed_at

    def test_close_freezes_escalation_attributes(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, 'handover', publisher=publisher)

        task = services.close_task(task.pk, bob, publisher=publisher)

        assert task.is_escalated is True
        assert task.original_user == alice
        assert task.escalation_reason == 'handover'
        assert task.invariant_violations() == []

    def test_reopening_is_invalid(self, make_task, publisher, alice):
        task = make_task(alice)
        services.close_task(task.pk, alice, publisher=publisher)
        with pytest.raises(InvalidState):
            services.update_task_status(task.pk, alice, Task.Status.IN_PROGRESS, publisher=publisher)

    def test_in_progress_on_open_task_is_invalid(self, make_task, publisher, alice):
        task = make_task(alice)
        with pytest.raises(InvalidState):
            services.update_task_status(task.pk, alice, Task.Status.IN_PROGRESS, publisher=publisher)

    def test_unknown_status(self, make_task, publisher, alice):
        task = make_task(alice)
        with pytest.raises(ValidationError):
            services.update_task_status(task.pk, alice, 'done', publisher=publisher)

    def test_original_owner_cannot_close_escalated_task(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)
        with pytest.raises(Forbidden):
            services.close_task(task.pk, alice, publisher=publisher)


# =============================================================================
# Update / Delete / Progress
# =============================================================================

class TestUpdateTask:
    def test_update_changes_fields_and_bumps_version(self, make_task, publisher, alice):
        task = make_task(alice)

        task = services.update_task(
            task.pk, alice,
            {'description': 'Rotated the certificates', 'reference_id': 'inc-7', 'tags': ['infra']},
            publisher=publisher,
        )

        assert task.description == 'Rotated the certificates'
        assert task.reference_id == 'INC-7'
        assert task.tags == ['infra']
        assert task.version == 2
        assert task.activities.filter(action_type=TaskActivity.ActionType.UPDATED).count() == 3

    def test_no_op_update_keeps_version(self, make_task, publisher, alice):
        task = make_task(alice)
        task = services.update_task(task.pk, alice, {'remarks': task.remarks}, publisher=publisher)
        assert task.version == 1

    def test_ownership_fields_are_not_editable(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        with pytest.raises(ValidationError):
            services.update_task(task.pk, alice, {'user': bob.pk}, publisher=publisher)
        task.refresh_from_db()
        assert task.user == alice

    def test_user_cannot_move_date_into_the_past(self, make_task, publisher, alice):
        task = make_task(alice)
        with pytest.raises(Forbidden):
            services.update_task(
                task.pk, alice, {'date': timezone.localdate() - timedelta(days=1)}, publisher=publisher,
            )

    def test_user_can_move_date_to_today(self, make_task, publisher, alice):
        task = make_task(alice, date=date(2024, 1, 15))
        task = services.update_task(task.pk, alice, {'date': timezone.localdate()}, publisher=publisher)
        assert task.date == timezone.localdate()

    def test_admin_can_set_any_date(self, make_task, publisher, admin_user, alice):
        task = make_task(alice)
        task = services.update_task(task.pk, admin_user, {'date': '2024-02-29'}, publisher=publisher)
        assert task.date == date(2024, 2, 29)

    def test_closed_task_is_read_only(self, make_task, publisher, alice):
        task = make_task(alice)
        services.close_task(task.pk, alice, publisher=publisher)
        with pytest.raises(InvalidState):
            services.update_task(task.pk, alice, {'remarks': 'late'}, publisher=publisher)

    def test_non_owner_is_forbidden(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        with pytest.raises(Forbidden):
            services.update_task(task.pk, bob, {'remarks': 'mine now'}, publisher=publisher)


class TestDeleteTask:
    def test_admin_can_delete(self, make_task, publisher, admin_user, alice):
        task = make_task(alice)
        services.add_progress(task.pk, alice, 'note', publisher=publisher)

        services.delete_task(task.pk, admin_user, publisher=publisher)

        assert not Task.objects.filter(pk=task.pk).exists()
        assert not Progress.objects.filter(task_id=task.pk).exists()

    def test_owner_cannot_delete(self, make_task, publisher, alice):
        task = make_task(alice)
        with pytest.raises(Forbidden):
            services.delete_task(task.pk, alice, publisher=publisher)


class TestProgress:
    def test_delegate_adds_progress(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)

        progress = services.add_progress(task.pk, bob, 'Halfway there', publisher=publisher)

        assert progress.user == bob
        assert progress.date == timezone.localdate()
        assert [entry.pk for entry in services.get_progress(task.pk, bob)] == [progress.pk]

    def test_closed_task_accepts_no_progress(self, make_task, publisher, alice):
        task = make_task(alice)
        services.close_task(task.pk, alice, publisher=publisher)
        with pytest.raises(InvalidState):
            services.add_progress(task.pk, alice, 'too late', publisher=publisher)

    def test_stranger_cannot_add_progress(self, make_task, publisher, alice, carol):
        task = make_task(alice)
        with pytest.raises(Forbidden):
            services.add_progress(task.pk, carol, 'drive-by', publisher=publisher)


# =============================================================================
# Concurrency & Invariants
# =============================================================================

class TestConcurrency:
    def test_stale_expected_version_conflicts(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)

        with pytest.raises(Conflict) as excinfo:
            services.close_task(task.pk, bob, expected_version=1, publisher=publisher)

        assert excinfo.value.retryable is True
        task.refresh_from_db()
        assert task.is_open

    def test_matching_expected_version_succeeds(self, make_task, publisher, alice):
        task = make_task(alice)
        task = services.close_task(task.pk, alice, expected_version=task.version, publisher=publisher)
        assert task.version == 2

    def test_compare_and_set_rejects_lost_update(self, make_task, publisher, alice, bob):
        task = make_task(alice)
        stale = Task.objects.get(pk=task.pk)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)

        with pytest.raises(Conflict):
            with transaction.atomic():
                services._commit(stale, remarks='written from a stale read')

        task.refresh_from_db()
        assert task.remarks == 'ok'
        assert task.user == bob

    def test_lock_contention_surfaces_as_conflict(self, db):
        with pytest.raises(Conflict) as excinfo:
            with services._task_transaction(7):
                raise OperationalError('database table is locked: tasks_task')
        assert excinfo.value.retryable is True

    def test_other_database_errors_propagate(self, db):
        with pytest.raises(OperationalError):
            with services._task_transaction(7):
                raise OperationalError('no such column: tasks_task.colour')

    def test_database_rejects_original_user_on_unescalated_task(self, make_task, alice, carol):
        task = make_task(alice)
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Task.objects.filter(pk=task.pk).update(original_user=carol)

    def test_invariants_hold_through_a_full_lifecycle(self, make_task, publisher, alice, bob, carol):
        task = make_task(alice)
        steps = [
            lambda: services.escalate_task(task.pk, alice, bob.pk, publisher=publisher),
            lambda: services.rollback_task(task.pk, bob, publisher=publisher),
            lambda: services.escalate_task(task.pk, alice, carol.pk, publisher=publisher),
            lambda: services.escalate_task(task.pk, carol, bob.pk, publisher=publisher),
            lambda: services.close_task(task.pk, bob, publisher=publisher),
        ]
        for version, step in enumerate(steps, start=2):
            current = step()
            assert current.invariant_violations() == []
            assert current.version == version


@pytest.mark.django_db(transaction=True)
class TestRacingEscalations:
    def test_racers_serialize_or_conflict(self, make_task, publisher, admin_user, alice, bob, carol):
        task = make_task(alice)
        barrier = threading.Barrier(2)
        outcomes = {}

        def escalate(target):
            barrier.wait()
            try:
                outcomes[target.pk] = services.escalate_task(task.pk, admin_user, target.pk, publisher=publisher)
            except Exception as exc:
                outcomes[target.pk] = exc

        racers = [threading.Thread(target=escalate, args=(target,)) for target in (bob, carol)]
        for racer in racers:
            racer.start()
        for racer in racers:
            racer.join(timeout=10)

        assert set(outcomes) == {bob.pk, carol.pk}
        for target_id, outcome in outcomes.items():
            assert isinstance(outcome, (Task, Conflict)), repr(outcome)
            if isinstance(outcome, Conflict):
                assert outcome.retryable
                services.escalate_task(task.pk, admin_user, target_id, publisher=publisher)

        task.refresh_from_db()
        assert task.is_escalated
        assert task.original_user == alice
        assert task.user_id in (bob.pk, carol.pk)
        assert task.version == 3
        assert task.invariant_violations() == []


# =============================================================================
# Audit Trail & Load
# =============================================================================

class TestOwnershipHistory:
    def test_history_replays_owner_handoffs(self, make_task, publisher, alice, bob, carol):
        task = make_task(alice)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)
        services.rollback_task(task.pk, bob, publisher=publisher)
        services.escalate_task(task.pk, alice, carol.pk, publisher=publisher)

        handoffs = TaskActivity.objects.for_task(task.pk).ownership_changes()

        assert [(row.old_value, row.new_value) for row in handoffs] == [
            (str(alice.pk), str(bob.pk)),
            (str(bob.pk), str(alice.pk)),
            (str(alice.pk), str(carol.pk)),
        ]

    def test_user_task_load(self, make_task, publisher, alice, bob):
        make_task(alice)
        delegated = make_task(alice)
        services.escalate_task(delegated.pk, alice, bob.pk, publisher=publisher)
        services.close_task(make_task(alice).pk, alice, publisher=publisher)

        load = {user.pk: user for user in User.objects.active().with_task_load()}

        assert load[alice.pk].open_tasks == 1
        assert load[alice.pk].delegated_tasks == 1
        assert load[bob.pk].open_tasks == 1
        assert load[bob.pk].delegated_tasks == 0

    def test_department_task_counts(self, make_task, publisher, alice, bob, department):
        task = make_task(alice)
        make_task(bob)
        services.escalate_task(task.pk, alice, bob.pk, publisher=publisher)
        services.close_task(task.pk, bob, publisher=publisher)

        counts = Department.objects.with_task_counts().get(pk=department.pk)

        assert (counts.task_total, counts.task_closed, counts.task_escalated) == (2, 1, 1)
