from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)

KEY_HINT = "Generate a strong key with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Perform startup validation checks when Django initializes.

        This ensures critical security configurations are properly set
        before the application starts accepting requests.
        """
        import sys
        if 'pytest' in sys.modules:
            # Test runs use development keys; the validators are tested directly
            return

        if 'runserver' not in sys.argv and 'gunicorn' not in sys.argv[0]:
            # Skip validation for management commands (except runserver)
            if len(sys.argv) > 1 and sys.argv[1] not in ['runserver', 'test']:
                return

        validate_jwt_configuration(
            getattr(settings, 'JWT_SECRET_KEY', None),
            getattr(settings, 'SECRET_KEY', None),
        )
        self._validate_security_settings()

        logger.info("All startup security validations passed")

    def _validate_security_settings(self):
        """Validate general security settings."""
        debug = getattr(settings, 'DEBUG', False)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        if not secret_key:
            raise ImproperlyConfigured("SECRET_KEY must be set in environment variables.")

        if len(secret_key) < 50:
            logger.warning(
                f"SECRET_KEY is shorter than recommended (current: {len(secret_key)}, recommended: 50+)"
            )

        if not debug:
            weak_patterns = ['your-secret-key', 'change-me', 'insecure', '12345', 'password']

            secret_lower = secret_key.lower()
            for pattern in weak_patterns:
                if pattern in secret_lower:
                    raise ImproperlyConfigured(
                        f"SECRET_KEY appears to be a default or weak value (contains '{pattern}')."
                    )

            if not getattr(settings, 'SECURE_SSL_REDIRECT', False):
                logger.warning("SECURE_SSL_REDIRECT is not enabled in production.")


def validate_jwt_configuration(jwt_secret, secret_key):
    """
    Validate the JWT signing key.

    Raises:
        ImproperlyConfigured: If the key is missing, short, equal to
            SECRET_KEY, or low in entropy
    """
    if not jwt_secret:
        raise ImproperlyConfigured(f"JWT_SECRET_KEY must be set in environment variables. {KEY_HINT}")

    if len(jwt_secret) < 32:
        raise ImproperlyConfigured(
            f"JWT_SECRET_KEY must be at least 32 characters long. "
            f"Current length: {len(jwt_secret)}. {KEY_HINT}"
        )

    if jwt_secret == secret_key:
        raise ImproperlyConfigured(f"JWT_SECRET_KEY must be different from SECRET_KEY. {KEY_HINT}")

    unique_chars = len(set(jwt_secret))
    if unique_chars < 16:
        raise ImproperlyConfigured(
            f"JWT_SECRET_KEY has insufficient entropy. "
            f"Found only {unique_chars} unique characters, need at least 16. {KEY_HINT}"
        )

    logger.info("JWT configuration validated")
