"""Django settings for the venue notification backend."""
from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path

import dj_database_url
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / '.env')

# Core security + environment config
SECRET_KEY = os.getenv('SECRET_KEY', 'change-me-in-production')
DEBUG = os.getenv('DEBUG', 'false').lower() == 'true'
ALLOWED_HOSTS = [host.strip() for host in os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if host.strip()]
for default_host in ('localhost', '127.0.0.1', '0.0.0.0', 'testserver'):
    if default_host not in ALLOWED_HOSTS:
        ALLOWED_HOSTS.append(default_host)
CSRF_TRUSTED_ORIGINS = [origin.strip() for origin in os.getenv('CSRF_TRUSTED_ORIGINS', '').split(',') if origin.strip()]

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv('CORS_ALLOWED_ORIGINS', 'http://localhost:3000,http://127.0.0.1:3000').split(',')
    if origin.strip()
]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'corsheaders',
    'rest_framework',
    'rest_framework_simplejwt',
    'venues',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'venue_backend.urls'

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

WSGI_APPLICATION = 'venue_backend.wsgi.application'

# Database configuration (DATABASE_URL, then MySQL via DB_* variables, then SQLite)
default_db_url = os.getenv('DATABASE_URL')
if default_db_url:
    DATABASES = {
        'default': dj_database_url.parse(default_db_url, conn_max_age=600, ssl_require=False),
    }
elif os.getenv('DB_NAME'):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.mysql',
            'NAME': os.getenv('DB_NAME'),
            'USER': os.getenv('DB_USER', 'root'),
            'PASSWORD': os.getenv('DB_PASSWORD', ''),
            'HOST': os.getenv('DB_HOST', '127.0.0.1'),
            'PORT': os.getenv('DB_PORT', '3306'),
            'OPTIONS': {'charset': 'utf8mb4'},
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

LANGUAGE_CODE = os.getenv('LANGUAGE_CODE', 'cs')
TIME_ZONE = os.getenv('TIME_ZONE', 'Europe/Prague')
USE_I18N = True
USE_TZ = True

STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': (
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ),
    'DEFAULT_PERMISSION_CLASSES': (
        'rest_framework.permissions.IsAuthenticated',
    ),
    'DEFAULT_THROTTLE_RATES': {
        'quick_request': os.getenv('API_QUICK_REQUEST_RATE', '20/hour'),
    },
}

SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(minutes=int(os.getenv('ACCESS_TOKEN_LIFETIME_MINUTES', '60'))),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=int(os.getenv('REFRESH_TOKEN_LIFETIME_DAYS', '7'))),
    'ROTATE_REFRESH_TOKENS': False,
    'BLACKLIST_AFTER_ROTATION': False,
}

EMAIL_BACKEND = os.getenv('EMAIL_BACKEND', 'django.core.mail.backends.console.EmailBackend')
EMAIL_HOST = os.getenv('EMAIL_HOST')
EMAIL_PORT = int(os.getenv('EMAIL_PORT', '587'))
EMAIL_HOST_USER = os.getenv('EMAIL_HOST_USER')
EMAIL_HOST_PASSWORD = os.getenv('EMAIL_HOST_PASSWORD')
EMAIL_USE_TLS = os.getenv('EMAIL_USE_TLS', 'true').lower() == 'true'
DEFAULT_FROM_EMAIL = os.getenv('DEFAULT_FROM_EMAIL', 'Prostormat <noreply@example.com>')

# Venue listing rotation
ROTATION_WINDOW_SECONDS = int(os.getenv('ROTATION_WINDOW_SECONDS', '300'))
VENUE_PAGE_SIZE = int(os.getenv('VENUE_PAGE_SIZE', '20'))
VENUE_PAGE_SIZE_MAX = int(os.getenv('VENUE_PAGE_SIZE_MAX', '60'))
VENUE_VISIBLE_STATUSES = [
    status.strip()
    for status in os.getenv('VENUE_VISIBLE_STATUSES', 'published,active').split(',')
    if status.strip()
]

# Broadcast fan-out + delivery
BROADCAST_EMAIL_SENDER = os.getenv('BROADCAST_EMAIL_SENDER', 'django')
BROADCAST_FROM_EMAIL = os.getenv('BROADCAST_FROM_EMAIL', DEFAULT_FROM_EMAIL)
BROADCAST_OPERATOR_EMAIL = os.getenv('BROADCAST_OPERATOR_EMAIL')
BROADCAST_EMAIL_RATE_LIMIT_PER_MIN = int(os.getenv('BROADCAST_EMAIL_RATE_LIMIT_PER_MIN', '60'))
BROADCAST_AUTO_SEND = os.getenv('BROADCAST_AUTO_SEND', 'false').lower() == 'true'
BROADCAST_TITLE_PREFIX = os.getenv('BROADCAST_TITLE_PREFIX', 'Rychlá poptávka')
BROADCAST_TITLE_SEPARATOR = os.getenv('BROADCAST_TITLE_SEPARATOR', ' · ')
WHOLE_CITY_SENTINEL = os.getenv('WHOLE_CITY_SENTINEL', 'Celá Praha')
CITY_NAME = os.getenv('CITY_NAME', 'Praha')
PHONE_DEFAULT_REGION = os.getenv('PHONE_DEFAULT_REGION', 'CZ')

RESEND_API_KEY = os.getenv('RESEND_API_KEY')
RESEND_API_URL = os.getenv('RESEND_API_URL', 'https://api.resend.com/emails')
RESEND_TIMEOUT_SECONDS = float(os.getenv('RESEND_TIMEOUT_SECONDS', '10'))
RESEND_WEBHOOK_SECRET = os.getenv('RESEND_WEBHOOK_SECRET')
WEBHOOK_MAX_BODY_BYTES = int(os.getenv('WEBHOOK_MAX_BODY_BYTES', str(256 * 1024)))
WEBHOOK_DB_TIMEOUT_MS = int(os.getenv('WEBHOOK_DB_TIMEOUT_MS', '5000'))

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '[{asctime}] {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        }
    },
    'root': {
        'handlers': ['console'],
        'level': os.getenv('LOG_LEVEL', 'INFO'),
    },
    'loggers': {
        'venues': {
            'handlers': ['console'],
            'level': os.getenv('VENUES_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
