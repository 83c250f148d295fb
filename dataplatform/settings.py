"""
Django settings for the dataplatform project.
"""

import os
from pathlib import Path

import dj_database_url

BASE_DIR = Path(__file__).resolve().parent.parent

DEBUG = os.getenv('DEBUG', 'False') == 'True'
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-placeholder-change-me')
ALLOWED_HOSTS = os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'dataplatform.batched_migrations',
]

DATABASES = {
    'default': dj_database_url.config(
        default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}",
        conn_max_age=int(os.getenv('CONN_MAX_AGE', '0')),
    )
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
USE_TZ = True
TIME_ZONE = 'UTC'

# Batched background migrations
ENABLE_BATCHED_MIGRATION_SCHEDULER = os.getenv(
    'ENABLE_BATCHED_MIGRATION_SCHEDULER', 'False')
BATCHED_MIGRATIONS_STRICT = os.getenv('BATCHED_MIGRATIONS_STRICT', 'False')
BATCHED_MIGRATIONS_MAX_ATTEMPTS = int(
    os.getenv('BATCHED_MIGRATIONS_MAX_ATTEMPTS', '3'))
BATCHED_MIGRATIONS_TICK_SECONDS = int(
    os.getenv('BATCHED_MIGRATIONS_TICK_SECONDS', '60'))
# Unset means ten intervals of the migration the batch belongs to.
BATCHED_MIGRATIONS_STUCK_AFTER_SECONDS = int(
    os.getenv('BATCHED_MIGRATIONS_STUCK_AFTER_SECONDS', '0')) or None
BATCHED_MIGRATIONS_SCHEMA_DATABASES = {
    'main': 'default',
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
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
        'level': 'INFO',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': os.getenv('DJANGO_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'dataplatform': {
            'handlers': ['console'],
            'level': os.getenv('DATAPLATFORM_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
