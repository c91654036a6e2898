"""Production settings for the class reminder project.

This module extends the base settings with production specific
configuration. Sensitive values (secret key, encryption key, cron secret)
must be provided via environment variables.
"""

from .base import *  # noqa: F401,F403
from .base import get_env

# Never run with debug enabled in production
DEBUG = False

SECRET_KEY = get_env('DJANGO_SECRET_KEY', required=True)
ENCRYPTION_KEY = get_env('ENCRYPTION_KEY', required=True)
CRON_SECRET = get_env('CRON_SECRET', required=True)

# Allowed hosts should be defined explicitly via environment variable
ALLOWED_HOSTS = get_env('DJANGO_ALLOWED_HOSTS', '').split(',')

# Configure secure proxies and cookies
CSRF_COOKIE_SECURE = True
SESSION_COOKIE_SECURE = True
