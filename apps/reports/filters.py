"""
KPI time-window filter using django-filter.

A window selects tasks by their work date in exactly one mode:
- year: every task dated in that year
- year + month: every task dated in that month
- date_from + date_to: inclusive explicit range

No parameters at all means all time.
"""

import django_filters
from django import forms

from apps.tasks.models import Task


class IntegerFilter(django_filters.NumberFilter):
    """NumberFilter that cleans to int instead of Decimal."""
    field_class = forms.IntegerField


class TaskWindowForm(forms.Form):
    """Cross-field validation of the window modes."""

    def clean(self):
        cleaned_data = super().clean()
        year = cleaned_data.get('year')
        month = cleaned_data.get('month')
        date_from = cleaned_data.get('date_from')
        date_to = cleaned_data.get('date_to')

        calendar_mode = year is not None or month is not None
        range_mode = date_from is not None or date_to is not None

        if calendar_mode and range_mode:
            raise forms.ValidationError(
                "Use either year/month or date_from/date_to, not both.",
                code='mixed_modes',
            )

        if month is not None and year is None:
            raise forms.ValidationError("month requires year.", code='month_without_year')

        if range_mode and (date_from is None or date_to is None):
            raise forms.ValidationError(
                "date_from and date_to must be given together.",
                code='open_range',
            )

        if date_from and date_to and date_from > date_to:
            raise forms.ValidationError(
                "date_from must be on or before date_to.",
                code='inverted_range',
            )

        return cleaned_data


class TaskWindowFilter(django_filters.FilterSet):
    """
    Window over Task.date.

    Usage:
        filterset = TaskWindowFilter({'year': 2024, 'month': 3}, queryset=Task.objects.all())
        if filterset.is_valid():
            tasks = filterset.qs
    """

    year = IntegerFilter(
        field_name='date',
        lookup_expr='year',
        min_value=1,
        max_value=9999,
        label='Year'
    )

    month = IntegerFilter(
        field_name='date',
        lookup_expr='month',
        min_value=1,
        max_value=12,
        label='Month'
    )

    date_from = django_filters.DateFilter(
        field_name='date',
        lookup_expr='gte',
        label='From Date'
    )

    date_to = django_filters.DateFilter(
        field_name='date',
        lookup_expr='lte',
        label='To Date'
    )

    class Meta:
        model = Task
        fields = []
        form = TaskWindowForm

    def error_messages(self):
        """Flatten form errors into a list of strings."""
        messages = []
        for field, errors in self.form.errors.items():
            for error in errors:
                if field == '__all__':
                    messages.append(error)
                else:
                    messages.append(f'{field}: {error}')
        return messages

    def describe(self):
        """The applied window as a JSON-friendly dict (valid filters only)."""
        window = {}
        for name, value in self.form.cleaned_data.items():
            if value is None:
                continue
            window[name] = value.isoformat() if hasattr(value, 'isoformat') else value
        return window


# Query string aliases accepted from clients
WINDOW_ALIASES = {
    'dateFrom': 'date_from',
    'dateTo': 'date_to',
}


def normalize_window_params(params):
    """
    Map request parameters onto TaskWindowFilter field names.

    Blank values are dropped so `?year=` means "no year".
    """
    if not params:
        return {}
    window = {}
    for key in params:
        name = WINDOW_ALIASES.get(key, key)
        if name not in TaskWindowFilter.base_filters:
            continue
        value = params.get(key)
        if value in (None, ''):
            continue
        window[name] = value
    return window
