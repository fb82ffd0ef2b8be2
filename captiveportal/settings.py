"""
Django settings for the captive portal access backend
"""

from pathlib import Path
from decouple import config, Csv

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = config(
    "SECRET_KEY", default="django-insecure-captiveportal-dev-key-change-in-production"
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = config("DEBUG", default=False, cast=bool)

ALLOWED_HOSTS = config(
    "ALLOWED_HOSTS",
    default="localhost,127.0.0.1,testserver",
    cast=Csv(),
)

# Application definition
INSTALLED_APPS = [
    "jazzmin",
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "rest_framework.authtoken",
    "corsheaders",
    "django_crontab",  # For scheduled tasks
    "access",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "captiveportal.urls"

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

WSGI_APPLICATION = "captiveportal.wsgi.application"

# Database
# SQLite by default; set DB_ENGINE=django.db.backends.mysql (and install the
# "mysql" extra) for production.
DB_ENGINE = config("DB_ENGINE", default="django.db.backends.sqlite3")

if DB_ENGINE == "django.db.backends.sqlite3":
    DATABASES = {
        "default": {
            "ENGINE": DB_ENGINE,
            "NAME": config("DB_NAME", default=str(BASE_DIR / "db.sqlite3")),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": DB_ENGINE,
            "NAME": config("DB_NAME", default="captiveportal"),
            "USER": config("DB_USER", default="root"),
            "PASSWORD": config("DB_PASSWORD", default=""),
            "HOST": config("DB_HOST", default="localhost"),
            "PORT": config("DB_PORT", default="3306"),
            "OPTIONS": {
                "charset": "utf8mb4",
                "init_command": "SET sql_mode='STRICT_TRANS_TABLES'",
            },
        }
    }


# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.CommonPasswordValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.NumericPasswordValidator",
    },
]

# Internationalization
LANGUAGE_CODE = "en-us"
TIME_ZONE = config("TIME_ZONE", default="Africa/Nairobi")
USE_I18N = True
USE_TZ = True

# Static files (CSS, JavaScript, Images)
STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# WhiteNoise settings
WHITENOISE_USE_FINDERS = DEBUG  # Only use finders in development
WHITENOISE_AUTOREFRESH = DEBUG  # Only in development
WHITENOISE_MAX_AGE = 31536000 if not DEBUG else 0  # 1 year cache in production

# Security Settings - Environment Aware Configuration
if not DEBUG:
    SECURE_CONTENT_TYPE_NOSNIFF = True
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_HSTS_SECONDS = config("SECURE_HSTS_SECONDS", default=0, cast=int)
    # Turn on when the portal is served behind a TLS terminator
    SECURE_SSL_REDIRECT = config("SECURE_SSL_REDIRECT", default=False, cast=bool)
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
    SESSION_COOKIE_SECURE = SECURE_SSL_REDIRECT
    CSRF_COOKIE_SECURE = SECURE_SSL_REDIRECT
    X_FRAME_OPTIONS = "DENY"
    SECURE_REFERRER_POLICY = "same-origin"
else:
    SECURE_SSL_REDIRECT = False
    SESSION_COOKIE_SECURE = False
    CSRF_COOKIE_SECURE = False
    X_FRAME_OPTIONS = "SAMEORIGIN"

# Logging
LOG_LEVEL = config("LOG_LEVEL", default="INFO")
LOG_FILE = config("LOG_FILE", default="")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {process:d} {thread:d} {message}",
            "style": "{",
        },
        "simple": {
            "format": "{levelname} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO" if DEBUG else "WARNING",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "access": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

if LOG_FILE:
    LOGGING["handlers"]["file"] = {
        "class": "logging.FileHandler",
        "filename": LOG_FILE,
        "formatter": "verbose",
    }
    LOGGING["loggers"]["django"]["handlers"].append("file")
    LOGGING["loggers"]["access"]["handlers"].append("file")

# Default primary key field type
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# REST Framework Configuration
REST_FRAMEWORK = {
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.AllowAny",
    ],
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.TokenAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
        "rest_framework.parsers.FormParser",
    ],
    "EXCEPTION_HANDLER": "access.exception_handler.custom_exception_handler",
}

# CORS settings - the captive portal page is served from the router / CDN
if DEBUG:
    CORS_ALLOW_ALL_ORIGINS = True
    CORS_ALLOWED_ORIGINS = []
else:
    CORS_ALLOW_ALL_ORIGINS = False
    CORS_ALLOWED_ORIGINS = config(
        "CORS_ALLOWED_ORIGINS",
        default="http://localhost:3000",
        cast=Csv(),
    )

CORS_PREFLIGHT_MAX_AGE = 86400  # 24 hours

CORS_ALLOW_HEADERS = [
    "accept",
    "accept-encoding",
    "authorization",
    "content-type",
    "origin",
    "user-agent",
    "x-csrftoken",
    "x-requested-with",
    "x-admin-access",  # Custom header for admin authentication
]

# Admin shared secret for privileged operations (voucher issuance, forced
# disconnect). An empty key rejects every admin request.
ACCESS_ADMIN_KEY = config("ACCESS_ADMIN_KEY", default="")

# Network Access Gateway
ACCESS_GATEWAY_BACKEND = config(
    "ACCESS_GATEWAY_BACKEND", default="access.gateway.LoggingGateway"
)
GATEWAY_TIMEOUT_SECONDS = config("GATEWAY_TIMEOUT_SECONDS", default=5, cast=float)

# RADIUS HTTP bridge (used by access.gateway.RadiusHTTPGateway)
RADIUS_SERVER_URL = config("RADIUS_SERVER_URL", default="http://localhost:1812")
RADIUS_SHARED_SECRET = config("RADIUS_SHARED_SECRET", default="testing123")

# MikroTik API Configuration (used by access.gateway.MikrotikGateway)
MIKROTIK_HOST = config("MIKROTIK_HOST", default="192.168.88.1")
MIKROTIK_PORT = config("MIKROTIK_PORT", default=8728, cast=int)
MIKROTIK_USER = config("MIKROTIK_USER", default="admin")
MIKROTIK_PASSWORD = config("MIKROTIK_PASSWORD", default="")
MIKROTIK_USE_SSL = config("MIKROTIK_USE_SSL", default=False, cast=bool)
# Control SSL certificate verification for self-signed certs (default: disabled)
MIKROTIK_SSL_VERIFY = config("MIKROTIK_SSL_VERIFY", default=False, cast=bool)

# Session expiry
EXPIRY_SWEEP_INTERVAL_SECONDS = config(
    "EXPIRY_SWEEP_INTERVAL_SECONDS", default=30, cast=int
)
EXPIRY_WATCHER_ENABLED = config("EXPIRY_WATCHER_ENABLED", default=False, cast=bool)

# Fallback grant length when a paid session has no package attached
DEFAULT_ACCESS_MINUTES = config("DEFAULT_ACCESS_MINUTES", default=60, cast=int)

# Codes
VOUCHER_CODE_LENGTH = 8
VOUCHER_MAX_BATCH = config("VOUCHER_MAX_BATCH", default=100, cast=int)
RECONNECTION_CODE_LENGTH = 6

# Phone numbers are stored as MSISDNs (2547XXXXXXXX)
PHONE_COUNTRY_CODE = config("PHONE_COUNTRY_CODE", default="254")

# Jazzmin Configuration
JAZZMIN_SETTINGS = {
    "site_title": "Captive Portal Admin",
    "site_header": "Captive Portal",
    "site_brand": "Captive Portal",
    "welcome_sign": "WiFi access administration",
    "copyright": "Captive Portal",
    "search_model": [
        "access.Session",
        "access.Payment",
        "access.Voucher",
    ],
    "topmenu_links": [
        {"name": "Home", "url": "admin:index", "permissions": ["auth.view_user"]},
        {"app": "access"},
    ],
    "show_sidebar": True,
    "navigation_expanded": True,
    "order_with_respect_to": ["auth", "access"],
    "icons": {
        "auth": "fas fa-users-cog",
        "auth.user": "fas fa-user",
        "auth.Group": "fas fa-users",
        "access.AccessPackage": "fas fa-boxes",
        "access.Session": "fas fa-wifi",
        "access.Payment": "fas fa-credit-card",
        "access.Voucher": "fas fa-ticket-alt",
        "access.AccessLog": "fas fa-history",
        "access.PaymentCallback": "fas fa-plug",
    },
    "default_icon_parents": "fas fa-chevron-circle-right",
    "default_icon_children": "fas fa-circle",
    "related_modal_active": False,
    "use_google_fonts_cdn": True,
    "show_ui_builder": False,
    "changeform_format": "horizontal_tabs",
    "language_chooser": False,
}


# CRONTAB CONFIGURATION FOR SCHEDULED TASKS
# ============================================
# Run 'python manage.py crontab add' to install cron jobs
# Run 'python manage.py crontab show' to list active cron jobs
# Run 'python manage.py crontab remove' to uninstall cron jobs
#
# Cron cannot go below one minute; for the 30 second cadence run
# 'python manage.py run_expiry_watcher' as a service. The cron entry is
# the fallback that keeps sweeping if the watcher dies.

CRONJOBS = [
    (
        "* * * * *",
        "access.tasks.sweep_expired_sessions",
        ">> /var/log/captiveportal_cron.log 2>&1",
    ),
]
