"""
Email authentication backend for the Django admin.

The REST API authenticates with JWT bearer tokens instead; see
apps.core.middleware.JWTAuthenticationMiddleware.
"""
from django.contrib.auth.backends import BaseBackend
from django.contrib.auth import get_user_model

User = get_user_model()


class EmailAuthBackend(BaseBackend):
    """
    Authenticate admin sessions by email and password.

    Only active superusers may use the admin site; everyone else logs in
    through /v1/auth/login.
    """

    def authenticate(self, request, username=None, password=None, **kwargs):
        # The admin login form posts the email as 'username'
        email = username or kwargs.get('email')

        if not email or not password:
            return None

        user = User.objects.by_email(email)
        if user is None:
            # Hash once anyway so unknown emails take as long as wrong passwords
            User().set_password(password)
            return None

        if user.check_password(password) and user.is_active:
            return user

        return None

    def get_user(self, user_id):
        try:
            return User.objects.get(pk=user_id, is_active=True)
        except User.DoesNotExist:
            return None
