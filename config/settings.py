import os
from pathlib import Path
from dotenv import load_dotenv

# --------------------------------------------------------------------------------------
# Core
# --------------------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

def getenv_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")

def getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default

# Secrets & environment
SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure-change-me")  # override in .env
DEBUG = getenv_bool("DJANGO_DEBUG", "True")  # True locally, False on prod

ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "").split(",") if h] or ["127.0.0.1", "localhost", "testserver"]

# CSRF (schemes must be present, e.g. https://example.com)
CSRF_TRUSTED_ORIGINS = [o for o in os.getenv("DJANGO_CSRF_TRUSTED_ORIGINS", "").split(",") if o]

ADMIN_URL = os.getenv("DJANGO_ADMIN_URL", "admin/")

# --------------------------------------------------------------------------------------
# Apps
# --------------------------------------------------------------------------------------
INSTALLED_APPS = [
    # ASGI runserver
    "daphne",

    # Django
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # Realtime (no Redis; in-memory only)
    "channels",

    # Custom Apps
    "accounts",
    "chat",
    "quiz",
]

# --------------------------------------------------------------------------------------
# Middleware / URLs / Templates
# --------------------------------------------------------------------------------------
MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"
ASGI_APPLICATION = "config.asgi.application"

# --------------------------------------------------------------------------------------
# Channels (InMemory only, single process)
# NOTE: Do NOT run multiple workers if you want pub/sub to work without Redis.
# --------------------------------------------------------------------------------------
CHANNEL_LAYERS = {
    "default": {"BACKEND": "channels.layers.InMemoryChannelLayer"}
}

# Seconds a websocket handshake may spend verifying its bearer token.
REALTIME_AUTH_TIMEOUT = getenv_int("REALTIME_AUTH_TIMEOUT", 10)
# Reject room joins for groups the user is not a member of.
REALTIME_VALIDATE_JOINS = getenv_bool("REALTIME_VALIDATE_JOINS", "True")

# --------------------------------------------------------------------------------------
# Database (SQLite; DJANGO_DB_PATH overrides the file location)
# IMMEDIATE takes the write lock at BEGIN, so concurrent atomic blocks queue on
# the busy timeout instead of failing with "database is locked" at first write.
# --------------------------------------------------------------------------------------
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("DJANGO_DB_PATH", str(BASE_DIR / "db.sqlite3")),
        "OPTIONS": {
            "transaction_mode": "IMMEDIATE",
            "timeout": getenv_int("DJANGO_DB_TIMEOUT", 20),
        },
        # File-backed so threaded tests exercise real cross-connection locking.
        "TEST": {"NAME": os.getenv("DJANGO_TEST_DB_PATH", str(BASE_DIR / "test_db.sqlite3"))},
    }
}

# --------------------------------------------------------------------------------------
# Auth
# --------------------------------------------------------------------------------------
AUTH_USER_MODEL = "accounts.User"

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

# Bearer tokens (HTTP Authorization header and websocket handshake)
AUTH_TOKEN_SECRET = os.getenv("AUTH_TOKEN_SECRET", SECRET_KEY)
AUTH_TOKEN_ALGORITHM = os.getenv("AUTH_TOKEN_ALGORITHM", "HS256")
AUTH_TOKEN_LIFETIME_MINUTES = getenv_int("AUTH_TOKEN_LIFETIME_MINUTES", 60 * 24 * 30)

# --------------------------------------------------------------------------------------
# Messaging / quizzes
# --------------------------------------------------------------------------------------
MESSAGE_PAGE_SIZE = getenv_int("MESSAGE_PAGE_SIZE", 50)
MESSAGE_MAX_PAGE_SIZE = 100

# When on, a submit after startedAt + timeLimit closes the attempt unanswered and fails as Expired.
QUIZ_ENFORCE_TIME_LIMIT = getenv_bool("QUIZ_ENFORCE_TIME_LIMIT", "False")

# --------------------------------------------------------------------------------------
# I18N / TZ
# --------------------------------------------------------------------------------------
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# --------------------------------------------------------------------------------------
# Static
# --------------------------------------------------------------------------------------
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# --------------------------------------------------------------------------------------
# Security (tighten automatically when DEBUG=False)
# --------------------------------------------------------------------------------------
if not DEBUG:
    # Cookies
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True
    SESSION_COOKIE_SAMESITE = "Lax"
    CSRF_COOKIE_SAMESITE = "Lax"

    # HTTPS enforcement
    SECURE_SSL_REDIRECT = True

    # Hardening headers
    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = "DENY"
    REFERRER_POLICY = "same-origin"

    SECURE_HSTS_SECONDS = 31536000
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_HSTS_PRELOAD = True

# --------------------------------------------------------------------------------------
# Logging (project apps follow DJANGO_LOG_LEVEL)
# --------------------------------------------------------------------------------------
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s"},
    },
    "handlers": {"console": {"class": "logging.StreamHandler", "formatter": "plain"}},
    "root": {"handlers": ["console"], "level": "INFO" if not DEBUG else "DEBUG"},
    "loggers": {
        "django.request": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        "django.security": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        "django.db.backends": {"handlers": ["console"], "level": "INFO", "propagate": False},
        **{
            app: {"handlers": ["console"], "level": os.getenv("DJANGO_LOG_LEVEL", "INFO"), "propagate": False}
            for app in ("accounts", "chat", "core", "quiz")
        },
    },
}
