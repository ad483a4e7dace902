from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)

WEAK_SECRET_PATTERNS = ('change-me', 'insecure', 'your-secret-key', '12345', 'password')


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate access-control settings when Django initializes.

        Only serving processes are checked so that migrations, shells and
        tests run with partial configuration.
        """
        import sys
        if len(sys.argv) > 1 and sys.argv[1] != 'runserver' and 'gunicorn' not in sys.argv[0]:
            return

        self._validate_security_settings()
        self._validate_access_settings()

        logger.info("Startup configuration validated")

    def _validate_security_settings(self):
        secret_key = getattr(settings, 'SECRET_KEY', None)
        if not secret_key:
            raise ImproperlyConfigured("SECRET_KEY must be set in environment variables.")

        if not settings.DEBUG:
            secret_lower = secret_key.lower()
            for pattern in WEAK_SECRET_PATTERNS:
                if pattern in secret_lower:
                    raise ImproperlyConfigured(
                        f"SECRET_KEY appears to be a default or weak value (contains '{pattern}'). "
                        f"Generate a strong key with: "
                        f"python -c \"import secrets; print(secrets.token_urlsafe(50))\""
                    )

    def _validate_access_settings(self):
        if settings.PERMISSION_CACHE_TTL <= 0:
            raise ImproperlyConfigured("PERMISSION_CACHE_TTL must be a positive number of seconds.")
        if settings.INVITE_EXPIRATION_DAYS <= 0:
            raise ImproperlyConfigured("INVITE_EXPIRATION_DAYS must be a positive number of days.")
        if not settings.FRONTEND_URL:
            logger.warning("FRONTEND_URL is not set; invite links will be relative")
