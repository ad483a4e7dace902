"""
Email authentication backend for session and admin login.

Credential checks only; what a user may do inside a company is decided by
the authorization guard.
"""
from django.contrib.auth import get_user_model
from django.contrib.auth.backends import BaseBackend

User = get_user_model()


class EmailAuthBackend(BaseBackend):
    """Authenticate by email address instead of username."""

    def authenticate(self, request, username=None, password=None, **kwargs):
        # Django admin passes the email as 'username'
        email = username or kwargs.get('email')
        if not email or not password:
            return None

        user = User.objects.by_email(email)
        if user is None:
            # Hash once so unknown emails take as long as wrong passwords
            User().set_password(password)
            return None

        if user.is_active and user.check_password(password):
            return user
        return None

    def get_user(self, user_id):
        return User.objects.active().filter(pk=user_id).first()
