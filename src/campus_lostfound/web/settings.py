"""
Django settings for the lost & found API.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent

# Security settings
SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-secret-key-change-in-production")
DEBUG = os.environ.get("DJANGO_DEBUG", "False").lower() == "true"
ALLOWED_HOSTS = os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")

# The API sits behind a gateway that terminates TLS
SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
USE_X_FORWARDED_HOST = True

INSTALLED_APPS = [
    "campus_lostfound.web",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
    "campus_lostfound.web.middleware.ActorMiddleware",
]

ROOT_URLCONF = "campus_lostfound.web.urls"

# All state lives in the StateStore database; Django itself has no tables
DATABASES = {}

# Uploads above this size are streamed to a temp file instead of memory
FILE_UPLOAD_MAX_MEMORY_SIZE = 2 * 1024 * 1024
# Multipart bodies: 5 images of 5 MB plus form fields
DATA_UPLOAD_MAX_MEMORY_SIZE = 30 * 1024 * 1024

# Logging
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "WARNING",
        },
        "campus_lostfound": {
            "handlers": ["console"],
            "level": "INFO",
        },
    },
}

# Custom settings for our app, set at runtime by run_server
CONFIG_PATH = os.environ.get("LOSTFOUND_CONFIG", "config/config.yaml")
STATE_DB_PATH = os.environ.get("LOSTFOUND_DB_PATH", "data/state.db")
UPLOAD_DIR = os.environ.get("LOSTFOUND_UPLOAD_DIR", "")
