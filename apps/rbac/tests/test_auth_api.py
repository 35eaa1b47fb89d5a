"""
Tests for the authentication API.
"""
import pytest
from django.core.cache import cache

from apps.rbac.models import User
from conftest import TEST_PASSWORD

REGISTER_URL = '/v1/auth/register'
LOGIN_URL = '/v1/auth/login'
ME_URL = '/v1/auth/me'
PROFILE_URL = '/v1/auth/profile'
CHANGE_PASSWORD_URL = '/v1/auth/change-password'


@pytest.mark.django_db
class TestRegistration:

    def test_register_returns_token_and_permissions(self, api_client, seeded):
        response = api_client.post(REGISTER_URL, {
            'name': 'Jane Doe',
            'email': 'Jane@Example.com',
            'password': TEST_PASSWORD,
        }, format='json')

        assert response.status_code == 201
        body = response.json()
        assert body['success'] is True
        assert body['message'] == 'User registered successfully'
        assert body['data']['user']['email'] == 'jane@example.com'
        assert [role['name'] for role in body['data']['user']['roles']] == ['user']
        assert body['data']['permissions'] == [
            'tasks:create', 'tasks:delete', 'tasks:read', 'tasks:update'
        ]
        assert body['data']['token']
        assert 'password_hash' not in body['data']['user']

    def test_register_duplicate_email(self, api_client, regular_user):
        response = api_client.post(REGISTER_URL, {
            'name': 'Copy',
            'email': 'USER@example.com',
            'password': TEST_PASSWORD,
        }, format='json')

        assert response.status_code == 400
        assert response.json()['success'] is False

    def test_register_validates_input(self, api_client, seeded):
        response = api_client.post(REGISTER_URL, {
            'name': '',
            'email': 'not-an-email',
            'password': '123',
        }, format='json')

        assert response.status_code == 400
        body = response.json()
        assert body['error'] == 'Validation error'
        assert {'name', 'email', 'password'} <= set(body['details'])

    def test_register_without_seeded_roles_fails_cleanly(self, api_client, db):
        response = api_client.post(REGISTER_URL, {
            'name': 'Jane',
            'email': 'jane@example.com',
            'password': TEST_PASSWORD,
        }, format='json')

        assert response.status_code == 500
        assert not User.objects.filter(email='jane@example.com').exists()


@pytest.mark.django_db
class TestLogin:

    def test_login_success(self, api_client, regular_user):
        response = api_client.post(LOGIN_URL, {
            'email': 'user@example.com',
            'password': TEST_PASSWORD,
        }, format='json')

        assert response.status_code == 200
        body = response.json()
        assert body['message'] == 'Login successful'
        assert body['data']['user']['id'] == str(regular_user.id)
        assert 'tasks:read' in body['data']['permissions']

    @pytest.mark.parametrize('email,password', [
        ('user@example.com', 'wrong-password'),
        ('unknown@example.com', TEST_PASSWORD),
    ])
    def test_login_failures_are_indistinguishable(self, api_client, regular_user, email, password):
        response = api_client.post(LOGIN_URL, {'email': email, 'password': password}, format='json')

        assert response.status_code == 401
        assert response.json()['error'] == 'Invalid credentials'

    def test_inactive_user_cannot_login(self, api_client, regular_user):
        regular_user.is_active = False
        regular_user.save()

        response = api_client.post(LOGIN_URL, {
            'email': 'user@example.com',
            'password': TEST_PASSWORD,
        }, format='json')

        assert response.status_code == 401
        assert response.json()['error'] == 'Invalid credentials'

    def test_login_is_rate_limited_per_ip(self, api_client, regular_user, settings):
        settings.RATELIMIT_ENABLE = True
        cache.clear()
        try:
            statuses = [
                api_client.post(LOGIN_URL, {
                    'email': 'user@example.com',
                    'password': 'wrong-password',
                }, format='json').status_code
                for _ in range(6)
            ]
        finally:
            cache.clear()

        assert statuses[:5] == [401] * 5
        assert statuses[5] == 429


@pytest.mark.django_db
class TestCurrentUser:

    def test_me_returns_profile_with_permissions(self, user_client, regular_user):
        response = user_client.get(ME_URL)

        assert response.status_code == 200
        data = response.json()['data']
        assert data['email'] == regular_user.email
        assert data['permissions'] == ['tasks:create', 'tasks:delete', 'tasks:read', 'tasks:update']

    def test_me_requires_authentication(self, api_client, db):
        response = api_client.get(ME_URL)

        assert response.status_code == 401
        assert response.json()['success'] is False

    def test_invalid_token_is_rejected(self, api_client, db):
        api_client.credentials(HTTP_AUTHORIZATION='Bearer not-a-token')

        response = api_client.get(ME_URL)

        assert response.status_code == 401
        assert response.json()['error'] == 'Invalid or expired token'

    def test_token_of_deleted_user_is_rejected(self, user_client, regular_user):
        regular_user.delete()

        response = user_client.get(ME_URL)

        assert response.status_code == 401

    def test_update_profile(self, user_client):
        response = user_client.put(PROFILE_URL, {'name': 'Renamed'}, format='json')

        assert response.status_code == 200
        assert response.json()['data']['name'] == 'Renamed'

    def test_update_profile_rejects_taken_email(self, user_client, admin_user):
        response = user_client.put(PROFILE_URL, {'email': 'admin@example.com'}, format='json')

        assert response.status_code == 400

    def test_change_password(self, user_client, regular_user):
        response = user_client.put(CHANGE_PASSWORD_URL, {
            'current_password': TEST_PASSWORD,
            'new_password': 'N3w!Passw0rd#2',
        }, format='json')

        assert response.status_code == 200
        assert response.json()['message'] == 'Password changed successfully'
        regular_user.refresh_from_db()
        assert regular_user.check_password('N3w!Passw0rd#2')

    def test_change_password_requires_current_password(self, user_client):
        response = user_client.put(CHANGE_PASSWORD_URL, {
            'current_password': 'wrong-password',
            'new_password': 'N3w!Passw0rd#2',
        }, format='json')

        assert response.status_code == 400
