"""
Tests for audit recording helpers and the persistence task.
"""
from unittest.mock import patch

import pytest
from django.http import JsonResponse, HttpResponse
from django.test import RequestFactory
from django.utils import timezone

from apps.audit import recorder
from apps.audit.models import AuditLogEntry, AuditLogImmutableError
from apps.audit.tasks import persist_audit_entry
from conftest import make_user


@pytest.fixture
def request_factory():
    return RequestFactory()


class TestClassification:

    @pytest.mark.parametrize('path,expected', [
        ('/v1/tasks', ('task', 'tasks')),
        ('/v1/tasks/7b1c', ('task', 'tasks')),
        ('/v1/admin/users/7b1c/permissions', ('user', 'users')),
        ('/v1/admin/roles', ('role', 'roles')),
        ('/v1/admin/permissions/categories', ('permission', 'permissions')),
        ('/v1/admin/audit-logs/stats', ('audit', 'audit')),
        ('/v1/health/', ('system', 'system')),
        ('/v1/unknown', ('other', 'other')),
    ])
    def test_classify_resource(self, path, expected):
        assert recorder.classify_resource(path) == expected

    @pytest.mark.parametrize('method,path,expected', [
        ('GET', '/v1/tasks', 'tasks:read'),
        ('POST', '/v1/tasks', 'tasks:create'),
        ('PUT', '/v1/tasks/1', 'tasks:update'),
        ('PATCH', '/v1/admin/roles/1', 'roles:update'),
        ('DELETE', '/v1/admin/users/1', 'users:delete'),
        ('OPTIONS', '/v1/tasks', 'tasks:options'),
    ])
    def test_infer_action(self, method, path, expected):
        assert recorder.infer_action(method, path) == expected


class TestComputeChanges:

    def test_only_changed_fields_present_in_both(self):
        snapshot = {'title': 'Old', 'completed': False, 'description': 'Same'}
        submitted = {'title': 'New', 'completed': True, 'description': 'Same', 'extra': 'x'}

        assert recorder.compute_changes(snapshot, submitted) == {
            'title': 'Old → New',
            'completed': 'False → True',
        }

    def test_lists_are_rendered_sorted(self):
        changes = recorder.compute_changes({'roles': ['user']}, {'roles': ['viewer', 'editor']})

        assert changes == {'roles': 'user → editor, viewer'}

    def test_empty_inputs(self):
        assert recorder.compute_changes(None, {'a': 1}) == {}
        assert recorder.compute_changes({'a': 1}, None) == {}


class TestClientIp:

    def test_forwarded_for_wins(self, request_factory):
        request = request_factory.get('/', HTTP_X_FORWARDED_FOR='203.0.113.7, 10.0.0.1',
                                      HTTP_X_REAL_IP='198.51.100.2')

        assert recorder.get_client_ip(request) == '203.0.113.7'

    def test_real_ip_then_remote_addr(self, request_factory):
        assert recorder.get_client_ip(request_factory.get('/', HTTP_X_REAL_IP='198.51.100.2')) == '198.51.100.2'
        assert recorder.get_client_ip(request_factory.get('/', REMOTE_ADDR='192.0.2.9')) == '192.0.2.9'

    def test_malformed_headers_fall_back_to_remote_addr(self, request_factory):
        request = request_factory.get('/', HTTP_X_FORWARDED_FOR='not-an-ip, 10.0.0.1',
                                      HTTP_X_REAL_IP='x', REMOTE_ADDR='192.0.2.9')

        assert recorder.get_client_ip(request) == '192.0.2.9'

    def test_ipv6_is_accepted(self, request_factory):
        request = request_factory.get('/', HTTP_X_FORWARDED_FOR='2001:db8::1')

        assert recorder.get_client_ip(request) == '2001:db8::1'

    def test_no_valid_address(self, request_factory):
        request = request_factory.get('/', HTTP_X_FORWARDED_FOR='unknown', REMOTE_ADDR='')

        assert recorder.get_client_ip(request) is None



class TestDraft:

    @pytest.mark.django_db
    def test_build_draft_from_request(self, request_factory):
        user = make_user('alice@example.com', name='Alice')
        request = request_factory.put('/v1/tasks/abc', HTTP_USER_AGENT='pytest-agent')
        request.request_id = 'req-1'

        draft = recorder.build_draft(request, user=user)

        assert draft.user_id == str(user.id)
        assert draft.user_name == 'Alice'
        assert draft.action == 'tasks:update'
        assert draft.resource == '/v1/tasks/abc'
        assert draft.resource_type == 'task'
        assert draft.user_agent == 'pytest-agent'
        assert draft.request_id == 'req-1'

    @pytest.mark.django_db
    def test_draft_from_oversized_client_values_fits_the_table(self, request_factory):
        user = make_user(('a' * 190) + '@example.com', name='')
        request = request_factory.get('/v1/tasks/' + 'x' * 600, HTTP_X_FORWARDED_FOR='not-an-ip')
        request.request_id = 'r' * 200

        draft = recorder.build_draft(request, user=user).finalize(status_code=200)
        entry = AuditLogEntry(timestamp=timezone.now(), **draft.to_payload())

        entry.full_clean()
        assert draft.ip_address == '127.0.0.1'
        assert len(draft.user_name) == 150
        assert len(draft.request_id) == 64
        assert len(draft.resource) == 500


    def test_finalize_success_drops_error_message(self):
        draft = recorder.AuditDraft(
            user_id=None, user_name='Anonymous', action='tasks:read', resource='/v1/tasks',
            resource_type='task', ip_address=None, user_agent='', method='GET',
        )

        draft.finalize(200, error_message='ignored')

        assert draft.status == 'success'
        assert draft.error_message == ''

    def test_finalize_error(self):
        draft = recorder.AuditDraft(
            user_id=None, user_name='Anonymous', action='tasks:read', resource='/v1/tasks',
            resource_type='task', ip_address=None, user_agent='', method='GET',
        )

        draft.finalize(404, error_message='Task not found')

        assert draft.status == 'error'
        assert draft.to_payload()['error_message'] == 'Task not found'

    def test_extract_error_message(self):
        assert recorder.extract_error_message(JsonResponse({'success': False, 'error': 'Nope'})) == 'Nope'
        assert recorder.extract_error_message(JsonResponse({'success': True})) is None
        assert recorder.extract_error_message(HttpResponse('plain text')) is None


@pytest.mark.django_db
class TestPersistence:

    def payload(self, **overrides):
        payload = {
            'user_id': None,
            'user_name': 'Anonymous',
            'action': 'tasks:read',
            'resource': '/v1/tasks',
            'resource_type': 'task',
            'status': 'success',
            'changes': {},
            'error_message': '',
            'ip_address': '127.0.0.1',
            'user_agent': 'pytest',
            'method': 'GET',
            'request_id': 'req-1',
        }
        payload.update(overrides)
        return payload

    def test_persist_task_writes_entry(self):
        entry_id = persist_audit_entry(self.payload())

        entry = AuditLogEntry.objects.get(id=entry_id)
        assert entry.action == 'tasks:read'
        assert entry.timestamp is not None

    def test_persist_task_swallows_storage_errors(self):
        with patch('apps.audit.recorder.write_entry', side_effect=RuntimeError('db down')):
            assert persist_audit_entry(self.payload()) is None

    def test_dispatch_swallows_broker_errors(self):
        draft = recorder.AuditDraft(
            user_id=None, user_name='Anonymous', action='tasks:read', resource='/v1/tasks',
            resource_type='task', ip_address=None, user_agent='', method='GET',
        ).finalize(200)

        with patch('apps.audit.tasks.persist_audit_entry') as task:
            task.delay.side_effect = ConnectionError('no broker')
            recorder.dispatch(draft)

        assert not AuditLogEntry.objects.exists()

    def test_record_now_returns_none_on_failure(self):
        draft = recorder.AuditDraft(
            user_id=None, user_name='Anonymous', action='tasks:read', resource='/v1/tasks',
            resource_type='task', ip_address=None, user_agent='', method='GET',
        ).finalize(403, error_message='denied')

        with patch('apps.audit.recorder.write_entry', side_effect=RuntimeError('db down')):
            assert recorder.record_now(draft) is None

    def test_entries_are_immutable(self):
        entry = recorder.write_entry(self.payload())

        entry.action = 'tasks:delete'
        with pytest.raises(AuditLogImmutableError):
            entry.save()
        with pytest.raises(AuditLogImmutableError):
            entry.delete()
        with pytest.raises(AuditLogImmutableError):
            AuditLogEntry.objects.filter(id=entry.id).update(action='x')
        with pytest.raises(AuditLogImmutableError):
            AuditLogEntry.objects.all().delete()
