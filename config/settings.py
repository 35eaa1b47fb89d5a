"""
Django settings for the TaskGuard API.
"""
import os
import warnings
from pathlib import Path
import environ
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration
from sentry_sdk.integrations.celery import CeleryIntegration
from kombu import Queue, Exchange

# Build paths inside the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Development-only fallbacks; startup validation rejects them outside DEBUG
DEV_SECRET_KEY = 'django-insecure-taskguard-development-key-change-me'
DEV_JWT_SECRET_KEY = 'dev-jwt-signing-key-7f3a9c2e5b8d1f4a6c0e9b2d5f8a1c4e'

# Initialize environment variables
env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, ['localhost', '127.0.0.1']),
    DB_CONN_MAX_AGE=(int, 600),
    RATE_LIMIT_ENABLED=(bool, True),
    JSON_LOGS=(bool, False),
    LOG_LEVEL=(str, 'INFO'),
    AUDIT_LOG_PAGE_SIZE=(int, 50),
)

# Read .env file if it exists
environ.Env.read_env(os.path.join(BASE_DIR, '.env'))

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = env('SECRET_KEY', default=DEV_SECRET_KEY)
if SECRET_KEY == DEV_SECRET_KEY:
    warnings.warn("SECRET_KEY is not set; using the development fallback.")

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = env('DEBUG')

ALLOWED_HOSTS = env('ALLOWED_HOSTS')

USE_X_FORWARDED_HOST = True
SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')

# Application definition
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Third-party apps
    'rest_framework',
    'drf_spectacular',
    'corsheaders',
    'django_ratelimit',

    # TaskGuard apps
    'apps.core',
    'apps.rbac',
    'apps.audit',
    'apps.tasks',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',

    # Custom middleware
    'apps.core.middleware.RequestIDMiddleware',
    'apps.core.middleware.JWTAuthenticationMiddleware',
    'apps.audit.middleware.AuditMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# Database
DATABASES = {
    'default': env.db('DATABASE_URL', default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}
DATABASES['default']['CONN_MAX_AGE'] = env('DB_CONN_MAX_AGE')

# Configure based on database engine
if 'postgresql' in DATABASES['default']['ENGINE']:
    DATABASES['default']['OPTIONS'] = {
        'connect_timeout': 10,
    }

# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Static files (CSS, JavaScript, Images)
STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Custom User Model
# Email-based accounts holding one or more roles
AUTH_USER_MODEL = 'rbac.User'

# Authentication Backends (Django admin sessions only; the API uses JWT)
AUTHENTICATION_BACKENDS = [
    'apps.rbac.backends.EmailAuthBackend',
]

# REST Framework
REST_FRAMEWORK = {
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
    'DEFAULT_PAGINATION_CLASS': 'apps.core.pagination.StandardResultsSetPagination',
    'PAGE_SIZE': 50,
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
    ],
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'apps.core.authentication.MiddlewareAuthentication',  # Use user from JWTAuthenticationMiddleware
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'apps.core.permissions.HasPermission',
    ],
    'EXCEPTION_HANDLER': 'apps.core.exceptions.custom_exception_handler',
    'TEST_REQUEST_DEFAULT_FORMAT': 'json',
}

# DRF Spectacular (OpenAPI)
SPECTACULAR_SETTINGS = {
    'TITLE': 'TaskGuard API',
    'DESCRIPTION': '''
Task management API with role-based access control and audit logging.

## Authentication

API requests are authenticated with a JWT bearer token:
- `Authorization: Bearer <token>` - token obtained from `/v1/auth/login` or `/v1/auth/register`

## Authorization

Every protected endpoint requires one named permission in `category:action`
form (e.g. `tasks:read`, `roles:manage`). A user's effective permissions are
the union of the permissions of all roles assigned to them and are computed
fresh on every request.

Default roles:
- **admin** (system): every permission
- **user** (system): `tasks:create`, `tasks:read`, `tasks:update`, `tasks:delete`
- **viewer**: `tasks:read`
- **editor**: all task permissions
- **moderator**: `tasks:read`, `tasks:update`, `tasks:delete`, `users:read`
- **auditor**: `audit:read`, `reports:view`

A missing permission returns 403 with the required permission named in the
`permission` field, and the denied attempt is written to the audit log.

## Audit Log

Every authenticated request produces exactly one audit entry with its action
(e.g. `roles:create`), outcome, client address and, for updates, the changed
fields rendered as `old → new`.

## Response Envelope

```json
{"success": true, "data": {...}, "message": "..."}
{"success": false, "error": "...", "code": "..."}
```

List endpoints add `pagination: {page, limit, total, pages}`.

## Rate Limiting

| Endpoint | Rate Limit | Key Type |
|----------|-----------|----------|
| `POST /v1/auth/register` | 10/hour | IP address |
| `POST /v1/auth/login` | 5/min per IP, 10/hour per email | IP + Email |

When rate limit is exceeded, the API returns `429 Too Many Requests` with a `Retry-After` header.
    ''',
    'VERSION': '1.0.0',
    'SERVE_INCLUDE_SCHEMA': False,
    'COMPONENT_SPLIT_REQUEST': True,
    'SCHEMA_PATH_PREFIX': r'/v1/',
    'SWAGGER_UI_SETTINGS': {
        'deepLinking': True,
        'persistAuthorization': True,
        'displayOperationId': True,
        'filter': True,
    },
    'SECURITY': [
        {
            'JWTAuth': []
        }
    ],
    'APPEND_COMPONENTS': {
        'securitySchemes': {
            'JWTAuth': {
                'type': 'http',
                'scheme': 'bearer',
                'bearerFormat': 'JWT',
                'description': 'JWT token obtained from /v1/auth/login or /v1/auth/register. Include as: Authorization: Bearer <token>.',
            }
        }
    },
    'SERVERS': [
        {
            'url': 'http://localhost:8000',
            'description': 'Development server'
        },
    ],
    'TAGS': [
        {'name': 'Authentication', 'description': 'User registration, login, and profile management'},
        {'name': 'Admin - Permissions', 'description': 'Permission registry management'},
        {'name': 'Admin - Roles', 'description': 'Role management and permission assignments'},
        {'name': 'Admin - Users', 'description': 'User administration and role assignments'},
        {'name': 'Admin - Audit Logs', 'description': 'Audit log viewing and statistics'},
        {'name': 'Tasks', 'description': 'Task management'},
        {'name': 'System', 'description': 'Health checks'},
    ],
}


# Security headers
if not DEBUG:
    # Redirect all HTTP requests to HTTPS (TLS usually terminates at the proxy)
    SECURE_SSL_REDIRECT = env.bool('SECURE_SSL_REDIRECT', default=True)

    # HSTS (HTTP Strict Transport Security)
    SECURE_HSTS_SECONDS = 31536000  # 1 year
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_HSTS_PRELOAD = True

    # Secure Cookies
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    CSRF_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    CSRF_COOKIE_SAMESITE = 'Lax'
else:
    # Development settings - no HTTPS enforcement
    SECURE_SSL_REDIRECT = False
    SECURE_HSTS_SECONDS = 0
    SESSION_COOKIE_SECURE = False
    CSRF_COOKIE_SECURE = False

SECURE_CONTENT_TYPE_NOSNIFF = True  # Prevent MIME type sniffing
X_FRAME_OPTIONS = 'DENY'            # Prevent clickjacking

# CORS
CORS_ALLOW_ALL_ORIGINS = DEBUG  # Only allow all origins in development
CORS_ALLOWED_ORIGINS = env.list('CORS_ALLOWED_ORIGINS', default=[])

if not DEBUG:
    # Production: origins must be HTTPS
    for origin in CORS_ALLOWED_ORIGINS:
        if not origin.startswith('https://'):
            raise environ.ImproperlyConfigured(
                f"CORS origin must use HTTPS in production: {origin}. "
                f"Update CORS_ALLOWED_ORIGINS in .env"
            )

CORS_ALLOW_CREDENTIALS = True
CORS_ALLOW_HEADERS = [
    'accept',
    'accept-encoding',
    'authorization',
    'content-type',
    'dnt',
    'origin',
    'user-agent',
    'x-csrftoken',
    'x-requested-with',
    'x-request-id',
]
CORS_EXPOSE_HEADERS = ['x-request-id', 'retry-after']

# Cache
REDIS_URL = env('REDIS_URL', default=None)

if REDIS_URL:
    CACHES = {
        'default': {
            'BACKEND': 'django_redis.cache.RedisCache',
            'LOCATION': REDIS_URL,
            'OPTIONS': {
                'CLIENT_CLASS': 'django_redis.client.DefaultClient',
                'SOCKET_CONNECT_TIMEOUT': 5,
                'SOCKET_TIMEOUT': 5,
                'CONNECTION_POOL_KWARGS': {
                    'max_connections': 50,
                    'retry_on_timeout': True,
                },
            },
            'KEY_PREFIX': 'taskguard',
            'TIMEOUT': 300,
        }
    }
else:
    CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'taskguard',
            'TIMEOUT': 300,
        }
    }

# Celery
CELERY_BROKER_URL = env('CELERY_BROKER_URL', default=REDIS_URL)
CELERY_RESULT_BACKEND = env('CELERY_RESULT_BACKEND', default=None)
# Without a broker nothing would consume queued audit writes, so tasks run in-process
CELERY_TASK_ALWAYS_EAGER = env.bool('CELERY_TASK_ALWAYS_EAGER', default=not CELERY_BROKER_URL)
if not CELERY_BROKER_URL and not CELERY_TASK_ALWAYS_EAGER:
    raise environ.ImproperlyConfigured(
        "CELERY_TASK_ALWAYS_EAGER is off but no CELERY_BROKER_URL or REDIS_URL is set; "
        "queued audit entries would never be written."
    )

CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'

CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 5 * 60        # 5 minutes
CELERY_TASK_SOFT_TIME_LIMIT = 4 * 60   # 4 minutes

CELERY_TASK_DEFAULT_QUEUE = 'default'
CELERY_TASK_DEFAULT_EXCHANGE = 'default'
CELERY_TASK_DEFAULT_ROUTING_KEY = 'default'

CELERY_TASK_QUEUES = (
    Queue('default', Exchange('default'), routing_key='default'),
    Queue('audit', Exchange('audit'), routing_key='audit'),
)

CELERY_TASK_ROUTES = {
    'audit.*': {'queue': 'audit'},
}

CELERY_WORKER_PREFETCH_MULTIPLIER = 1
CELERY_TASK_ACKS_LATE = True

# Rate limiting (django-ratelimit)
RATE_LIMIT_ENABLED = env('RATE_LIMIT_ENABLED')

RATELIMIT_USE_CACHE = 'default'
RATELIMIT_ENABLE = RATE_LIMIT_ENABLED

RATELIMIT_VIEW = 'apps.core.exceptions.ratelimit_view'

# Logging
LOG_LEVEL = env('LOG_LEVEL')
JSON_LOGS = env('JSON_LOGS')
LOG_DIR = env('LOG_DIR', default=None)

LOG_FORMATTER = 'json' if JSON_LOGS else 'verbose'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'json': {
            '()': 'apps.core.logging.JSONFormatter',
        },
        'verbose': {
            '()': 'apps.core.log_sanitizer.SanitizingFormatter',
            'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
            'style': '{',
        },
        'simple': {
            '()': 'apps.core.log_sanitizer.SanitizingFormatter',
            'format': '{levelname} {message}',
            'style': '{',
        },
    },
    'filters': {
        'require_debug_false': {
            '()': 'django.utils.log.RequireDebugFalse',
        },
        'require_debug_true': {
            '()': 'django.utils.log.RequireDebugTrue',
        },
        'sanitize': {
            '()': 'apps.core.log_sanitizer.SanitizingFilter',
        },
        'request_context': {
            '()': 'apps.core.middleware.LoggingFilter',
        },
    },
    'handlers': {
        'console': {
            'level': LOG_LEVEL,
            'class': 'logging.StreamHandler',
            'formatter': LOG_FORMATTER,
            'filters': ['request_context', 'sanitize'],
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'django.request': {
            'handlers': ['console'],
            'level': 'ERROR',
            'propagate': False,
        },
        'celery': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'apps': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'security': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}

if LOG_DIR:
    # Rotating files next to the console output
    for handler_name, filename, backups in (('file', 'taskguard.log', 5), ('security_file', 'security.log', 10)):
        LOGGING['handlers'][handler_name] = {
            'level': 'INFO',
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': os.path.join(LOG_DIR, filename),
            'maxBytes': 1024 * 1024 * 10,  # 10 MB
            'backupCount': backups,
            'formatter': LOG_FORMATTER,
            'filters': ['request_context', 'sanitize'],
        }
    for logger_name in ('django.request', 'celery', 'apps'):
        LOGGING['loggers'][logger_name]['handlers'].append('file')
    LOGGING['loggers']['security']['handlers'].append('security_file')

# Sentry
SENTRY_DSN = env('SENTRY_DSN', default=None)
SENTRY_ENVIRONMENT = env('SENTRY_ENVIRONMENT', default='development')
SENTRY_RELEASE = env('SENTRY_RELEASE', default=None)

if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[
            DjangoIntegration(),
            CeleryIntegration(),
        ],
        environment=SENTRY_ENVIRONMENT,
        release=SENTRY_RELEASE,
        traces_sample_rate=0.1 if not DEBUG else 1.0,
        send_default_pii=False,
        attach_stacktrace=True,
        max_breadcrumbs=50,
    )

# JWT
JWT_SECRET_KEY = env('JWT_SECRET_KEY', default=DEV_JWT_SECRET_KEY)
if JWT_SECRET_KEY == DEV_JWT_SECRET_KEY:
    warnings.warn("JWT_SECRET_KEY is not set; using the development fallback.")

JWT_ALGORITHM = env('JWT_ALGORITHM', default='HS256')
JWT_EXPIRATION_HOURS = env.int('JWT_EXPIRATION_HOURS', default=24)

# RBAC
DEFAULT_USER_ROLE = env('DEFAULT_USER_ROLE', default='user')
ADMIN_ROLE_NAME = env('ADMIN_ROLE_NAME', default='admin')

# Audit log
AUDIT_LOG_PAGE_SIZE = env('AUDIT_LOG_PAGE_SIZE')
