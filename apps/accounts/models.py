"""
User model for the daily task tracker.

Users sign in with their email address. A user's role decides which tasks
they may act on (see apps.tasks.permissions); the department they belong to
is copied onto every task they log.
"""

from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.db import models
from django.db.models import Count, Q


class UserQuerySet(models.QuerySet):

    def active(self):
        return self.filter(is_active=True)

    def with_task_load(self):
        """
        Annotate how much work each user is carrying right now.

        open_tasks: in-progress tasks they currently own
        delegated_tasks: in-progress tasks they escalated away
        """
        return self.annotate(
            open_tasks=Count(
                'owned_tasks',
                filter=Q(owned_tasks__status='in-progress'),
                distinct=True,
            ),
            delegated_tasks=Count(
                'escalated_away_tasks',
                filter=Q(escalated_away_tasks__status='in-progress'),
                distinct=True,
            ),
        )


class UserManager(BaseUserManager.from_queryset(UserQuerySet)):

    def _create_user(self, email, password, **extra_fields):
        if not email:
            raise ValueError('Users must have an email address')
        user = self.model(email=self.normalize_email(email), **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_user(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', False)
        extra_fields.setdefault('is_superuser', False)
        return self._create_user(email, password, **extra_fields)

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('role', User.Role.SUPERADMIN)
        extra_fields['is_staff'] = True
        extra_fields['is_superuser'] = True
        return self._create_user(email, password, **extra_fields)


class User(AbstractUser):
    """
    A person who logs daily tasks.

    Roles:
    - Superadmin: administrator who may also work outside any department
    - Admin: may escalate, roll back, close or delete any task
    - User: acts on the tasks they currently own
    """

    class Role(models.TextChoices):
        SUPERADMIN = 'superadmin', 'Super Admin'
        ADMIN = 'admin', 'Admin'
        USER = 'user', 'User'

    username = None
    email = models.EmailField(
        'email address',
        unique=True,
        error_messages={
            'unique': 'A user with that email already exists.',
        },
    )
    name = models.CharField(max_length=255, blank=True)
    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.USER,
        db_index=True,
    )
    department = models.ForeignKey(
        'departments.Department',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='users',
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['name']

    class Meta:
        ordering = ['name', 'email']

    def __str__(self):
        return f"{self.get_full_name()} <{self.email}>"

    def get_full_name(self):
        """Display name; the email stands in when no name was given."""
        return self.name or self.email

    def get_short_name(self):
        return self.get_full_name().split(' ')[0]

    def is_superadmin(self):
        return self.role == self.Role.SUPERADMIN

    def is_admin(self):
        """Admins and superadmins share administrative task rights."""
        return self.role in (self.Role.ADMIN, self.Role.SUPERADMIN)
