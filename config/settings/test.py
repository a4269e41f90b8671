"""
Django test settings for daily_tasks project.

In-memory SQLite, fast password hashing, locmem email and Django-Q2 in
sync mode so queued jobs run inline.
"""

from .base import *

DEBUG = False

ALLOWED_HOSTS = ['testserver', 'localhost']

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.MD5PasswordHasher',
]

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

# Enabled explicitly by the tests that exercise it
TASK_EMAIL_NOTIFICATIONS = False

REALTIME_QUEUE_SIZE = 10

REALTIME_KEEPALIVE_SECONDS = 1

Q_CLUSTER = {
    'name': 'daily_tasks_test',
    'sync': True,
    'orm': 'default',
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'null': {
            'class': 'logging.NullHandler',
        },
    },
    'loggers': {
        'apps': {
            'handlers': ['null'],
            'level': 'DEBUG',
            'propagate': True,
        },
    },
}
