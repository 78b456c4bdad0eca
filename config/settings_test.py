"""
Settings for the test run.

Usage:
    DJANGO_SETTINGS_MODULE=config.settings_test python manage.py test
    pytest
"""
import os
import tempfile

from .settings import *  # noqa: F401,F403

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'OPTIONS': {'timeout': 20, 'transaction_mode': 'IMMEDIATE'},
        # Threaded tests open their own connections, so the test database lives on disk.
        'TEST': {'NAME': os.path.join(tempfile.gettempdir(), 'storefront_tests.sqlite3')},
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'storefront-tests',
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

RATE_LIMIT_ENABLED = False

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = False
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
SMS_BACKEND = 'notifications.channels.sms.LocMemSMSBackend'

PAYMENT_GATEWAY_BACKEND = 'payments.gateway.fake.FakeGateway'
RAZORPAY_KEY_ID = 'rzp_test_key'
RAZORPAY_KEY_SECRET = 'rzp_test_secret'
RAZORPAY_WEBHOOK_SECRET = 'rzp_webhook_secret'
RAZORPAY_TEST_MODE = True

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {'null': {'class': 'logging.NullHandler'}},
    'root': {'handlers': ['null'], 'level': 'CRITICAL'},
}
