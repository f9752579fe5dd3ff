"""
Django settings for the supervision matching backend.
SQLite by default for local work and tests; PostgreSQL through DB_ENGINE.
Pragmatic, minimal configuration - no over-engineering.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Build paths
BASE_DIR = Path(__file__).resolve().parent.parent

# Security settings
SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'dev-secret-key-change-in-production')
DEBUG = os.getenv('DEBUG', 'False') == 'True'
ALLOWED_HOSTS = os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')

# Installed apps - the engine has no HTTP surface of its own
INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'store',     # Document store (one JSON document per row)
    'matching',  # Matching engine services
]

# Database - SQLite unless DB_ENGINE says otherwise
DB_ENGINE = os.getenv('DB_ENGINE', 'django.db.backends.sqlite3')

if DB_ENGINE == 'django.db.backends.sqlite3':
    DATABASES = {
        'default': {
            'ENGINE': DB_ENGINE,
            'NAME': os.getenv('DB_NAME', str(BASE_DIR / 'db.sqlite3')),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': DB_ENGINE,
            'NAME': os.getenv('DB_NAME', 'supervision_matching'),
            'USER': os.getenv('DB_USER', 'postgres'),
            'PASSWORD': os.getenv('DB_PASSWORD', 'postgres'),
            'HOST': os.getenv('DB_HOST', 'localhost'),
            'PORT': os.getenv('DB_PORT', '5432'),
            'OPTIONS': {
                'client_encoding': 'UTF8',
            },
        }
    }

# Document store backend and transaction retry policy
DOCUMENT_STORE = {
    'BACKEND': os.getenv('DOCUMENT_STORE_BACKEND', 'store.backends.DjangoDocumentStore'),
    'OPTIONS': {
        'max_attempts': int(os.getenv('TRANSACTION_MAX_ATTEMPTS', '5')),
        'base_delay': float(os.getenv('TRANSACTION_BASE_DELAY', '0.05')),
        'max_delay': float(os.getenv('TRANSACTION_MAX_DELAY', '1.0')),
    },
}

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Default auto field
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Logging
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
        },
        'file': {
            'class': 'logging.FileHandler',
            'filename': os.getenv('LOG_FILE', 'debug.log'),
        },
    },
    'root': {
        'handlers': ['console', 'file'],
        'level': 'INFO',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
        },
        'matching': {
            'handlers': ['console', 'file'],
            'level': os.getenv('MATCHING_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'store': {
            'handlers': ['console', 'file'],
            'level': os.getenv('STORE_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'common': {
            'handlers': ['console', 'file'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}

# Application
APP_NAME = 'Supervision Matching Engine'
APP_VERSION = '1.0.0'
