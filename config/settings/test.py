"""Test settings.

In-memory SQLite, eager Celery and fast hashing. Worker delays are zeroed so
the delivery loop does not sleep between batches under test.
"""

from .base import *  # noqa: F401,F403

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

STORAGES = {
    'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
    'staticfiles': {'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage'},
}

ENCRYPTION_KEY = 'test-encryption-key'

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

LINE_CHANNEL_ACCESS_TOKEN = ''
LINE_CHANNEL_SECRET = ''

CRON_SECRET = 'test-cron-secret'

NOTIFICATIONS = {
    'TIMEZONE': 'Asia/Tokyo',
    'DAILY_GUARD': True,
    'SETTLE_DELAY_SECONDS': 0,
}

NOTIFICATION_WORKER = {
    'BATCH_SIZE': 10,
    'CONCURRENCY': 3,
    'MAX_TIME_MS': 30000,
    'DELAY_MS': 0,
    'LEASE_SECONDS': 600,
}
