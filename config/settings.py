"""
Django settings for the storefront backend.

Deployment values come from environment variables; defaults are suitable
for local development only.
"""
import os
from decimal import Decimal
from pathlib import Path

from celery.schedules import crontab

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def env_list(name, default=''):
    return [item.strip() for item in os.environ.get(name, default).split(',') if item.strip()]


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-only-insecure-secret-key')
DEBUG = env_bool('DJANGO_DEBUG', True)
ALLOWED_HOSTS = env_list('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1')

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'core',
    'inventory',
    'coupons',
    'cart',
    'payments',
    'orders',
    'notifications',
    'reviews',
    'wishlist',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# =============================================================================
# Database
# =============================================================================

DATABASE_ENGINE = os.environ.get('DATABASE_ENGINE', 'sqlite')

if DATABASE_ENGINE == 'postgresql':
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.environ.get('DATABASE_NAME', 'storefront'),
            'USER': os.environ.get('DATABASE_USER', 'storefront'),
            'PASSWORD': os.environ.get('DATABASE_PASSWORD', ''),
            'HOST': os.environ.get('DATABASE_HOST', 'localhost'),
            'PORT': os.environ.get('DATABASE_PORT', '5432'),
            'CONN_MAX_AGE': 60,
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

LANGUAGE_CODE = 'en-in'
TIME_ZONE = 'Asia/Kolkata'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

# =============================================================================
# REST Framework
# =============================================================================

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework.authentication.SessionAuthentication',
        'rest_framework.authentication.BasicAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.AllowAny',
    ],
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': 50,
    'COERCE_DECIMAL_TO_STRING': True,
}

# =============================================================================
# Redis, cache and rate limiting
# =============================================================================

REDIS_URL = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')
RATE_LIMIT_ENABLED = env_bool('RATE_LIMIT_ENABLED', True)

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.redis.RedisCache',
        'LOCATION': REDIS_URL,
        'TIMEOUT': 300,
    }
}

# =============================================================================
# Celery
# =============================================================================

CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', REDIS_URL)
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', REDIS_URL)
CELERY_TASK_ALWAYS_EAGER = env_bool('CELERY_TASK_ALWAYS_EAGER', False)
CELERY_TASK_EAGER_PROPAGATES = False
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE

CELERY_BEAT_SCHEDULE = {
    'expire-stale-pending-orders': {
        'task': 'orders.tasks.expire_stale_pending_orders',
        'schedule': crontab(minute='*/5'),
    },
    'mark-overdue-deliveries': {
        'task': 'orders.tasks.mark_overdue_deliveries',
        'schedule': crontab(minute=0, hour='*/6'),
    },
    'purge-expired-carts': {
        'task': 'cart.tasks.purge_expired_carts',
        'schedule': crontab(minute=30, hour=3),
    },
    'daily-order-report': {
        'task': 'orders.tasks.generate_daily_order_report',
        'schedule': crontab(minute=15, hour=0),
    },
}

# =============================================================================
# Payments
# =============================================================================

PAYMENT_GATEWAY_BACKEND = os.environ.get(
    'PAYMENT_GATEWAY_BACKEND', 'payments.gateway.razorpay.RazorpayGateway'
)
RAZORPAY_KEY_ID = os.environ.get('RAZORPAY_KEY_ID', '')
RAZORPAY_KEY_SECRET = os.environ.get('RAZORPAY_KEY_SECRET', '')
RAZORPAY_WEBHOOK_SECRET = os.environ.get('RAZORPAY_WEBHOOK_SECRET', '')
RAZORPAY_TEST_MODE = env_bool('RAZORPAY_TEST_MODE', DEBUG)
RAZORPAY_API_BASE = os.environ.get('RAZORPAY_API_BASE', 'https://api.razorpay.com/v1')
RAZORPAY_TIMEOUT_SECONDS = float(os.environ.get('RAZORPAY_TIMEOUT_SECONDS', '10'))
PAYMENT_CURRENCY = 'INR'

# =============================================================================
# Notifications
# =============================================================================

EMAIL_BACKEND = os.environ.get('EMAIL_BACKEND', 'django.core.mail.backends.smtp.EmailBackend')
DEFAULT_FROM_EMAIL = os.environ.get('DEFAULT_FROM_EMAIL', 'orders@prayanjewels.example')
SUPPORT_EMAIL = os.environ.get('SUPPORT_EMAIL', 'support@prayanjewels.example')

SMS_BACKEND = os.environ.get('SMS_BACKEND', 'notifications.channels.sms.ConsoleSMSBackend')
MSG91_AUTH_KEY = os.environ.get('MSG91_AUTH_KEY', '')
MSG91_SENDER_ID = os.environ.get('MSG91_SENDER_ID', 'PRAYAN')
MSG91_API_URL = os.environ.get('MSG91_API_URL', 'https://control.msg91.com/api/v5/flow/')

STORE_NAME = os.environ.get('STORE_NAME', 'Prayan Jewels')

# =============================================================================
# Storefront business rules
# =============================================================================

TAX_RATE = Decimal('0.18')
FREE_SHIPPING_THRESHOLD = Decimal('2000.00')
FLAT_SHIPPING_FEE = Decimal('100.00')
CART_LIFETIME_DAYS = 30
PENDING_ORDER_TIMEOUT_MINUTES = int(os.environ.get('PENDING_ORDER_TIMEOUT_MINUTES', '30'))
COUPON_CACHE_TTL_SECONDS = 30
REVIEW_CACHE_TTL_SECONDS = 300
WISHLIST_CACHE_TTL_SECONDS = 30

# =============================================================================
# Logging
# =============================================================================

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        app: {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False}
        for app in ('core', 'inventory', 'cart', 'coupons', 'payments', 'orders', 'notifications')
    },
}
