"""
Service layer for reports app.

KPI aggregation over the task store. Everything here is a read-side
projection: no KPI rows are stored and nothing is mutated.

Attribution: a task counts for a user when the user is its current owner
or the owner it was escalated away from (original_user). An escalated task
therefore appears in the delegate's and the original owner's snapshots.

Services:
- get_user_kpi: Snapshot for one user
- get_all_users_kpi: Snapshot for every user with attributable tasks
- get_overall_stats: Totals and per-department breakdown
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from django.contrib.auth import get_user_model
from django.db.models import Count, Q

from apps.tasks.exceptions import NotFound, InvalidWindow
from apps.tasks.models import Task
from .filters import TaskWindowFilter, normalize_window_params

logger = logging.getLogger(__name__)

User = get_user_model()

HUNDRED = Decimal('100')
TWO_PLACES = Decimal('0.01')
HALF_CREDIT = Decimal('0.5')

KPI_FIELDS = ('id', 'reference_id', 'status', 'is_escalated', 'user_id', 'original_user_id')


def percentage(numerator, denominator):
    """numerator / denominator as a percentage, rounded half-up to 2 places."""
    if not denominator:
        return Decimal('0.00')
    value = Decimal(numerator) * HUNDRED / Decimal(denominator)
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _money(value):
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


# =============================================================================
# Snapshot Types
# =============================================================================

@dataclass
class CreditBreakdown:
    """
    Weighted completion credits.

    - direct: closed, unescalated, owned by the user, reference id not shared (1.0)
    - shared: closed, unescalated, reference id owned by N users (1/N per id)
    - escalated away: closed after being escalated away from the user (0.5)
    - received escalated: closed after being escalated to the user (0.5)
    """
    direct_completed: int = 0
    shared_tasks: int = 0
    shared_credits: Decimal = Decimal('0')
    escalated_away: int = 0
    received_escalated: int = 0

    @property
    def direct_credits(self):
        return Decimal(self.direct_completed)

    @property
    def escalated_away_credits(self):
        return self.escalated_away * HALF_CREDIT

    @property
    def received_escalated_credits(self):
        return self.received_escalated * HALF_CREDIT

    @property
    def total_credits(self):
        return (
            self.direct_credits + self.shared_credits
            + self.escalated_away_credits + self.received_escalated_credits
        )

    def as_dict(self):
        return {
            'directCompleted': self.direct_completed,
            'directCredits': _money(self.direct_credits),
            'sharedTasks': self.shared_tasks,
            'sharedCredits': _money(self.shared_credits),
            'escalatedAway': self.escalated_away,
            'escalatedAwayCredits': _money(self.escalated_away_credits),
            'receivedEscalated': self.received_escalated,
            'receivedEscalatedCredits': _money(self.received_escalated_credits),
            'totalCredits': _money(self.total_credits),
        }


@dataclass
class KPISnapshot:
    """Computed, unstored KPI aggregate for one user over one window."""
    user_id: int
    name: str
    email: str
    department_id: int = None
    total: int = 0
    closed: int = 0
    open: int = 0
    pending: int = 0
    escalated: int = 0
    credits: CreditBreakdown = field(default_factory=CreditBreakdown)
    window: dict = field(default_factory=dict)

    @property
    def completion_rate(self):
        return percentage(self.closed, self.total)

    @property
    def penalized_rate(self):
        return percentage(max(0, self.closed - self.escalated), self.total)

    @property
    def credit_rate(self):
        return percentage(self.credits.total_credits, self.total)

    def as_dict(self):
        return {
            'userId': self.user_id,
            'name': self.name,
            'email': self.email,
            'departmentId': self.department_id,
            'total': self.total,
            'closed': self.closed,
            'open': self.open,
            'pending': self.pending,
            'escalated': self.escalated,
            'completionRate': self.completion_rate,
            'penalizedRate': self.penalized_rate,
            'creditRate': self.credit_rate,
            'breakdown': self.credits.as_dict(),
            'window': self.window,
        }


# =============================================================================
# Helpers
# =============================================================================

def resolve_window(window):
    """
    Apply a window to the task table.

    Args:
        window: None, a dict or a QueryDict with year/month or
            date_from/date_to (dateFrom/dateTo accepted)

    Returns:
        (queryset, applied window dict)

    Raises:
        InvalidWindow: If the parameters are malformed or inconsistent
    """
    queryset = Task.objects.order_by()
    params = normalize_window_params(window)
    if not params:
        return queryset, {}

    filterset = TaskWindowFilter(params, queryset=queryset)
    if not filterset.is_valid():
        messages = filterset.error_messages()
        raise InvalidWindow('Invalid KPI window: ' + ' '.join(messages), errors=messages)
    return filterset.qs, filterset.describe()


def _shared_owner_counts(queryset, reference_ids):
    """Distinct owners per reference id within the window."""
    if not reference_ids:
        return {}
    rows = (
        queryset.filter(reference_id__in=reference_ids)
        .values('reference_id')
        .annotate(owners=Count('user_id', distinct=True))
        .order_by()
    )
    return {row['reference_id']: row['owners'] for row in rows}


def _build_snapshot(user, rows, owner_counts, window):
    """Count one user's attributable task rows."""
    uid = user.pk
    snapshot = KPISnapshot(
        user_id=uid,
        name=user.get_full_name(),
        email=user.email,
        department_id=user.department_id,
        window=window,
    )
    credits = snapshot.credits
    shared_refs = set()

    for row in rows:
        is_closed = row['status'] == Task.Status.CLOSED
        owned = row['user_id'] == uid

        snapshot.total += 1
        if row['is_escalated']:
            snapshot.escalated += 1
        if not is_closed:
            snapshot.pending += 1
            if owned:
                snapshot.open += 1
            continue

        snapshot.closed += 1
        if row['is_escalated']:
            if row['original_user_id'] == uid:
                credits.escalated_away += 1
            elif owned:
                credits.received_escalated += 1
        elif owned:
            ref = row['reference_id']
            if ref and owner_counts.get(ref, 1) > 1:
                shared_refs.add(ref)
            else:
                credits.direct_completed += 1

    credits.shared_tasks = len(shared_refs)
    credits.shared_credits = sum(
        (Decimal(1) / Decimal(owner_counts[ref]) for ref in shared_refs),
        Decimal('0')
    )
    return snapshot


def _closed_direct_refs(rows):
    return {
        row['reference_id'] for row in rows
        if row['reference_id'] and row['status'] == Task.Status.CLOSED and not row['is_escalated']
    }


# =============================================================================
# KPI Operations
# =============================================================================

def get_user_kpi(user_id, window=None):
    """
    KPI snapshot for one user.

    Raises:
        NotFound: If the user does not exist
        InvalidWindow: If the window is malformed
    """
    try:
        user = User.objects.get(pk=user_id)
    except (User.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"User {user_id} not found.", user_id=user_id)

    queryset, applied = resolve_window(window)
    rows = list(
        queryset.filter(Q(user_id=user.pk) | Q(original_user_id=user.pk)).values(*KPI_FIELDS)
    )
    owner_counts = _shared_owner_counts(queryset, _closed_direct_refs(rows))
    return _build_snapshot(user, rows, owner_counts, applied)


def get_all_users_kpi(window=None):
    """
    KPI snapshots for every user with at least one attributable task in the
    window, ordered by user name.

    Raises:
        InvalidWindow: If the window is malformed
    """
    queryset, applied = resolve_window(window)
    rows = list(queryset.values(*KPI_FIELDS))

    rows_by_user = defaultdict(list)
    for row in rows:
        rows_by_user[row['user_id']].append(row)
        if row['original_user_id'] is not None and row['original_user_id'] != row['user_id']:
            rows_by_user[row['original_user_id']].append(row)

    if not rows_by_user:
        return []

    owner_counts = _shared_owner_counts(queryset, _closed_direct_refs(rows))
    users = User.objects.filter(pk__in=rows_by_user.keys()).order_by('name', 'pk')
    snapshots = [
        _build_snapshot(user, rows_by_user[user.pk], owner_counts, applied)
        for user in users
    ]
    logger.debug('Computed KPI for %d users (window=%s)', len(snapshots), applied)
    return snapshots


def get_overall_stats(window=None):
    """
    Totals over the window and a per-department breakdown.

    Raises:
        InvalidWindow: If the window is malformed
    """
    queryset, applied = resolve_window(window)
    counters = {
        'total': Count('id'),
        'closed': Count('id', filter=Q(status=Task.Status.CLOSED)),
        'pending': Count('id', filter=Q(status=Task.Status.IN_PROGRESS)),
        'escalated': Count('id', filter=Q(is_escalated=True)),
    }

    overall = queryset.aggregate(**counters)
    departments = (
        queryset.values('department_id', 'department__name')
        .annotate(**counters)
        .order_by('department__name')
    )

    def with_rates(stats):
        return {
            'totalTasks': stats['total'],
            'completedTasks': stats['closed'],
            'pendingTasks': stats['pending'],
            'escalatedTasks': stats['escalated'],
            'completionRate': percentage(stats['closed'], stats['total']),
            'escalationRate': percentage(stats['escalated'], stats['total']),
        }

    return {
        'window': applied,
        'overall': with_rates(overall),
        'byDepartment': [
            {
                'departmentId': row['department_id'],
                'department': row['department__name'],
                **with_rates(row),
            }
            for row in departments
        ],
    }
