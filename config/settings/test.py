"""Test settings.

File-backed SQLite so threaded tests can open their own connections,
eager Celery and the locmem mail outbox so the suite runs without
Redis or SMTP.
"""

import tempfile

from .base import *  # noqa: F401,F403

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',  # noqa: F405
        'TEST': {
            'NAME': os.path.join(tempfile.gettempdir(), 'slotkeeper-test.sqlite3'),  # noqa: F405
        },
        'OPTIONS': {'timeout': 20},
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

STORAGES = {
    'default': {
        'BACKEND': 'django.core.files.storage.FileSystemStorage',
    },
    'staticfiles': {
        'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
    },
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = False
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

OTP_ISSUE_COOLDOWN_SECONDS = 0
REALTIME_DELIVERY_TIMEOUT_SECONDS = 0.5
REALTIME_HEARTBEAT_SECONDS = 0.1
