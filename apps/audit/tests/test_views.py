"""
Tests for the audit log API.
"""
import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from apps.audit.models import AuditLogEntry

BASE_URL = '/v1/admin/audit-logs'


def create_entry(user, action='tasks:read', status='success', minutes_ago=0, error_message=''):
    return AuditLogEntry.objects.create(
        user_id=user.id,
        user_name=user.name,
        action=action,
        resource='/v1/tasks',
        resource_type='task',
        status=status,
        error_message=error_message,
        method='GET',
        timestamp=timezone.now() - timedelta(minutes=minutes_ago),
    )


@pytest.mark.django_db
class TestAuditLogViews:

    def test_list_is_paginated_newest_first(self, admin_client, regular_user, settings):
        settings.AUDIT_LOG_PAGE_SIZE = 2
        oldest = create_entry(regular_user, minutes_ago=30)
        create_entry(regular_user, minutes_ago=20)
        newest = create_entry(regular_user, minutes_ago=10)

        response = admin_client.get(BASE_URL)

        assert response.status_code == 200
        body = response.json()
        assert body['pagination'] == {'page': 1, 'limit': 2, 'total': 3, 'pages': 2}
        assert body['data'][0]['id'] == str(newest.id)

        ascending = admin_client.get(BASE_URL, {'sort': 'timestamp', 'limit': 10}).json()
        assert ascending['data'][0]['id'] == str(oldest.id)

    def test_list_filters(self, admin_client, regular_user):
        create_entry(regular_user, action='tasks:delete', status='error', error_message='Task not found')
        create_entry(regular_user, action='tasks:read')

        response = admin_client.get(BASE_URL, {'action': 'tasks:delete', 'status': 'error'})

        data = response.json()['data']
        assert len(data) == 1
        assert data[0]['error_message'] == 'Task not found'

    def test_invalid_filter_is_rejected(self, admin_client):
        response = admin_client.get(BASE_URL, {'status': 'unknown'})

        assert response.status_code == 400
        assert 'status' in response.json()['details']

    def test_detail(self, admin_client, regular_user):
        entry = create_entry(regular_user)

        response = admin_client.get(f'{BASE_URL}/{entry.id}')

        assert response.status_code == 200
        assert response.json()['data']['action'] == 'tasks:read'

    def test_detail_not_found(self, admin_client):
        response = admin_client.get(f'{BASE_URL}/{uuid.uuid4()}')

        assert response.status_code == 404

    def test_entries_for_user(self, admin_client, regular_user, other_user):
        create_entry(regular_user)
        create_entry(other_user)

        response = admin_client.get(f'{BASE_URL}/user/{regular_user.id}')

        data = response.json()['data']
        assert [item['user_id'] for item in data] == [str(regular_user.id)]

    def test_entries_for_unknown_user(self, admin_client):
        assert admin_client.get(f'{BASE_URL}/user/{uuid.uuid4()}').status_code == 404
        assert admin_client.get(f'{BASE_URL}/user/not-a-uuid').status_code == 404

    def test_stats(self, admin_client, regular_user):
        create_entry(regular_user)
        create_entry(regular_user, status='error', error_message='boom')

        response = admin_client.get(f'{BASE_URL}/stats')

        assert response.status_code == 200
        data = response.json()['data']
        assert data['total_actions'] == 2
        assert data['success_rate'] == 50.0
        assert set(data) == {
            'total_actions', 'success_rate', 'top_actions', 'top_users',
            'recent_errors', 'today_actions', 'yesterday_actions', 'change_percent',
        }

    def test_top_actions_and_users(self, admin_client, regular_user):
        create_entry(regular_user, action='tasks:read')
        create_entry(regular_user, action='tasks:read')
        create_entry(regular_user, action='tasks:create')

        actions = admin_client.get(f'{BASE_URL}/top-actions', {'limit': 1}).json()['data']
        users = admin_client.get(f'{BASE_URL}/top-users').json()['data']

        assert actions == [{'action': 'tasks:read', 'count': 2}]
        assert users[0] == {'user_id': str(regular_user.id), 'user_name': 'Regular User', 'count': 3}

    def test_requires_audit_read(self, user_client):
        response = user_client.get(BASE_URL)

        assert response.status_code == 403
        assert response.json()['permission'] == 'audit:read'

    def test_auditor_role_can_read(self, seeded):
        from rest_framework.test import APIClient
        from apps.rbac.models import Role
        from conftest import make_user, token_for

        auditor = make_user('auditor@example.com', roles=[Role.objects.by_name('auditor')])
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f'Bearer {token_for(auditor)}')

        assert client.get(f'{BASE_URL}/stats').status_code == 200
