"""Shared fixtures for the daily task tracker tests."""

import itertools

import pytest

from apps.accounts.models import User
from apps.departments.models import Department
from apps.notifications.realtime import ChannelRegistry, TaskEventPublisher
from apps.tasks import services


@pytest.fixture
def department(db):
    return Department.objects.create(name='Operations')


@pytest.fixture
def other_department(db):
    return Department.objects.create(name='Finance')


@pytest.fixture
def make_user(db, department):
    """Factory for users; department defaults to the Operations department."""
    counter = itertools.count(1)

    def make(name=None, role=User.Role.USER, dept=department, **extra):
        n = next(counter)
        return User.objects.create_user(
            email=f'user{n}@example.com',
            password='correct-horse-battery',
            name=name or f'User {n}',
            role=role,
            department=dept,
            **extra
        )
    return make


@pytest.fixture
def alice(make_user):
    return make_user(name='Alice')


@pytest.fixture
def bob(make_user):
    return make_user(name='Bob')


@pytest.fixture
def carol(make_user):
    return make_user(name='Carol')


@pytest.fixture
def admin_user(make_user):
    return make_user(name='Admin', role=User.Role.ADMIN)


@pytest.fixture
def registry():
    registry = ChannelRegistry(queue_size=10)
    registry.start()
    yield registry
    registry.close()


@pytest.fixture
def publisher(registry):
    return TaskEventPublisher(registry)


@pytest.fixture
def make_task(publisher):
    """Create a task through the service layer."""
    def make(user, description='Checked the backup logs', remarks='ok', **kwargs):
        kwargs.setdefault('publisher', publisher)
        return services.create_task(user, description, remarks, **kwargs)
    return make
