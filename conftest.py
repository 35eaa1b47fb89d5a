"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.management import call_command

TEST_PASSWORD = 'S3cure!Passw0rd'


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CELERY_TASK_ALWAYS_EAGER = True
    settings.CELERY_TASK_EAGER_PROPAGATES = False
    settings.RATELIMIT_ENABLE = False
    settings.SECURE_SSL_REDIRECT = False
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', verbosity=0)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def seeded(db):
    """Seed system permissions and default roles."""
    call_command('seed_permissions', verbosity=0)
    call_command('seed_roles', verbosity=0)


@pytest.fixture
def admin_role(seeded):
    from apps.rbac.models import Role
    return Role.objects.by_name('admin')


@pytest.fixture
def user_role(seeded):
    from apps.rbac.models import Role
    return Role.objects.by_name('user')


def make_user(email, name='Test User', roles=()):
    """Create an active user holding the given roles."""
    from apps.rbac.models import User, UserRole

    user = User.objects.create_user(email=email, password=TEST_PASSWORD, name=name)
    for role in roles:
        UserRole.objects.create(user=user, role=role)
    return user


@pytest.fixture
def admin_user(admin_role):
    """An admin account."""
    return make_user('admin@example.com', name='Admin', roles=[admin_role])


@pytest.fixture
def regular_user(user_role):
    """A registered user with the default role."""
    return make_user('user@example.com', name='Regular User', roles=[user_role])


@pytest.fixture
def other_user(user_role):
    return make_user('other@example.com', name='Other User', roles=[user_role])


def token_for(user):
    from apps.rbac.services import AuthService
    return AuthService.generate_jwt(user)


@pytest.fixture
def admin_client(admin_user):
    """APIClient authenticated as the admin through the bearer token."""
    from rest_framework.test import APIClient
    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {token_for(admin_user)}')
    return client


@pytest.fixture
def user_client(regular_user):
    """APIClient authenticated as the regular user through the bearer token."""
    from rest_framework.test import APIClient
    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {token_for(regular_user)}')
    return client
