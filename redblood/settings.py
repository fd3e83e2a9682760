# redblood/settings.py
"""
Django settings for the RedBlood backend.

Everything deployment specific comes from the environment; a ``.env`` file
at the project root is loaded first when present.
"""
import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / '.env')


def env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def env_list(name, default=''):
    return [item.strip() for item in os.environ.get(name, default).split(',') if item.strip()]


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-redblood-dev-key')
DEBUG = env_bool('DJANGO_DEBUG', False)
ALLOWED_HOSTS = env_list('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1')


INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'accounts',
    'bloodrequests',
    'donations',
    'notifications.apps.NotificationsConfig',
    'api',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'redblood.urls'
WSGI_APPLICATION = 'redblood.wsgi.application'

# Domain data lives in the document store; the database only backs
# Django's contrib apps.
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}

STORE_BACKENDS = {
    'memory': 'store.memory.MemoryStore',
    'firestore': 'store.firestore.FirestoreStore',
}

DOCUMENT_STORE = {
    'BACKEND': STORE_BACKENDS.get(
        os.environ.get('REDBLOOD_STORE_BACKEND', 'memory'),
        os.environ.get('REDBLOOD_STORE_BACKEND', 'memory'),
    ),
    'OPTIONS': {},
}
if DOCUMENT_STORE['BACKEND'] == STORE_BACKENDS['firestore']:
    DOCUMENT_STORE['OPTIONS']['prefix'] = os.environ.get('REDBLOOD_COLLECTION_PREFIX', '')

FIREBASE_CREDENTIALS = os.environ.get('FIREBASE_CREDENTIALS')
FIREBASE_PROJECT_ID = os.environ.get('FIREBASE_PROJECT_ID')
FIREBASE_AUTH_ENABLED = env_bool('REDBLOOD_FIREBASE_AUTH', True)


LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# REST Framework

_authentication_classes = ['rest_framework_simplejwt.authentication.JWTStatelessUserAuthentication']
if FIREBASE_AUTH_ENABLED:
    # Firebase goes first: it passes non-Firebase tokens on to simplejwt
    _authentication_classes.insert(0, 'accounts.authentication.FirebaseAuthentication')

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': _authentication_classes,
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'EXCEPTION_HANDLER': 'redblood.exceptions.exception_handler',
    'UNAUTHENTICATED_USER': None,
}

SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(hours=int(os.environ.get('JWT_ACCESS_HOURS', 24))),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=7),
    'SIGNING_KEY': os.environ.get('JWT_SIGNING_KEY', SECRET_KEY),
    'ALGORITHM': 'HS256',
    'AUTH_HEADER_TYPES': ('Bearer',),
    'USER_ID_CLAIM': 'user_id',
    'USER_ID_FIELD': 'id',
}


# Celery

CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = env_bool('CELERY_TASK_ALWAYS_EAGER', False)
CELERY_TASK_EAGER_PROPAGATES = CELERY_TASK_ALWAYS_EAGER
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE


# Email

EMAIL_BACKEND = os.environ.get('EMAIL_BACKEND', 'django.core.mail.backends.smtp.EmailBackend')
EMAIL_HOST = os.environ.get('EMAIL_HOST', 'smtp.gmail.com')
EMAIL_PORT = int(os.environ.get('EMAIL_PORT', 587))
EMAIL_USE_TLS = env_bool('EMAIL_USE_TLS', True)
EMAIL_HOST_USER = os.environ.get('EMAIL_HOST_USER', '')
EMAIL_HOST_PASSWORD = os.environ.get('EMAIL_HOST_PASSWORD', '')
DEFAULT_FROM_EMAIL = os.environ.get('DEFAULT_FROM_EMAIL', 'RedBlood <noreply@redblood.app>')


# Domain settings

REDBLOOD_DEFAULT_SEARCH_RADIUS_KM = float(os.environ.get('REDBLOOD_DEFAULT_SEARCH_RADIUS_KM', 50))
REDBLOOD_REQUEST_TTL_DAYS = int(os.environ.get('REDBLOOD_REQUEST_TTL_DAYS', 7))
REDBLOOD_DEFAULT_LIST_LIMIT = int(os.environ.get('REDBLOOD_DEFAULT_LIST_LIMIT', 20))
REDBLOOD_MAX_LIST_LIMIT = int(os.environ.get('REDBLOOD_MAX_LIST_LIMIT', 100))


# Logging

LOG_LEVEL = os.environ.get('REDBLOOD_LOG_LEVEL', 'INFO').upper()

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
        name: {'level': LOG_LEVEL}
        for name in (
            'accounts', 'algorithms', 'api', 'bloodrequests', 'donations',
            'notifications', 'redblood', 'store',
        )
    },
}
