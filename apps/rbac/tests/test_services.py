"""
Unit tests for RBAC services.

Tests permission resolution, the permission registry, role lifecycle,
user/role assignment and authentication.
"""
import uuid
import pytest
from hypothesis import given, settings as hypothesis_settings, HealthCheck, strategies as st

from apps.core.exceptions import (
    ValidationError,
    AuthenticationError,
    NotFoundError,
    ConflictError,
    ProtectedResourceError,
)
from apps.rbac.models import User, Permission, Role, RolePermission, UserRole
from apps.rbac.services import (
    PermissionResolver,
    PermissionService,
    RoleService,
    UserRoleService,
    AuthService,
)
from conftest import make_user, TEST_PASSWORD


def create_permission(name, system=False):
    category = name.split(':', 1)[0]
    return Permission.objects.create(
        name=name, description=name, category=category, is_system_permission=system
    )


def create_role(name, permissions=(), system=False):
    role = Role.objects.create(name=name, is_system_role=system)
    for permission in permissions:
        RolePermission.objects.create(role=role, permission=permission)
    return role


@pytest.mark.django_db
class TestPermissionResolver:
    """Test effective permission resolution."""

    def test_user_without_roles_has_no_permissions(self):
        user = make_user('nobody@example.com')

        assert PermissionResolver.resolve_effective_permissions(user) == []
        assert not PermissionResolver.has_permission(user, 'tasks:read')

    def test_union_of_roles_is_deduplicated(self):
        read = create_permission('tasks:read')
        update = create_permission('tasks:update')
        audit = create_permission('audit:read')
        editor = create_role('editor', [read, update])
        auditor = create_role('auditor', [read, audit])
        user = make_user('multi@example.com', roles=[editor, auditor])

        assert PermissionResolver.resolve_effective_permissions(user) == [
            'audit:read', 'tasks:read', 'tasks:update'
        ]

    def test_has_permission_is_case_insensitive(self):
        read = create_permission('tasks:read')
        user = make_user('u@example.com', roles=[create_role('viewer', [read])])

        assert PermissionResolver.has_permission(user, 'TASKS:READ')
        assert not PermissionResolver.has_permission(user, 'tasks:delete')

    def test_changes_to_roles_apply_immediately(self):
        read = create_permission('tasks:read')
        delete = create_permission('tasks:delete')
        role = create_role('editor', [read])
        user = make_user('u@example.com', roles=[role])
        assert not PermissionResolver.has_permission(user, 'tasks:delete')

        role.add_permission(delete)

        assert PermissionResolver.has_permission(user, 'tasks:delete')


NAMES = ['tasks:create', 'tasks:read', 'tasks:update', 'tasks:delete', 'audit:read', 'reports:view']


@pytest.mark.django_db
class TestPermissionResolverProperties:

    @hypothesis_settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(role_grants=st.lists(st.sets(st.sampled_from(NAMES)), min_size=1, max_size=4))
    def test_effective_permissions_equal_union_of_role_permissions(self, role_grants):
        UserRole.objects.all().delete()
        Role.objects.all().delete()
        Permission.objects.all().delete()
        User.objects.all().delete()

        permissions = {name: create_permission(name) for name in NAMES}
        roles = [
            create_role(f'role{index}', [permissions[name] for name in grants])
            for index, grants in enumerate(role_grants)
        ]
        user = make_user('prop@example.com', roles=roles)

        expected = sorted(set().union(*role_grants))
        resolved = PermissionResolver.resolve_effective_permissions(user)

        assert resolved == expected
        for name in NAMES:
            assert PermissionResolver.has_permission(user, name) == (name in expected)


@pytest.mark.django_db
class TestPermissionService:
    """Test the permission registry."""

    def test_create_permission(self):
        permission = PermissionService.create_permission('Tasks:Archive', 'Archive tasks', 'TASKS')

        assert permission.name == 'tasks:archive'
        assert permission.category == 'tasks'
        assert not permission.is_system_permission

    @pytest.mark.parametrize('name,category', [
        ('archive', 'tasks'),
        ('tasks:', 'tasks'),
        ('tasks:archive', 'unknown'),
        ('audit:archive', 'tasks'),
    ])
    def test_create_permission_rejects_invalid_input(self, name, category):
        with pytest.raises(ValidationError):
            PermissionService.create_permission(name, 'Description', category)

    def test_create_permission_requires_description(self):
        with pytest.raises(ValidationError):
            PermissionService.create_permission('tasks:archive', '   ', 'tasks')

    def test_duplicate_name_conflicts(self):
        PermissionService.create_permission('tasks:archive', 'Archive', 'tasks')

        with pytest.raises(ConflictError):
            PermissionService.create_permission('TASKS:ARCHIVE', 'Again', 'tasks')

    def test_update_custom_permission(self):
        permission = PermissionService.create_permission('tasks:archive', 'Archive', 'tasks')

        updated = PermissionService.update_permission(permission.id, description='Archive old tasks')

        assert updated.description == 'Archive old tasks'
        assert updated.name == 'tasks:archive'

    def test_system_permission_cannot_be_updated_or_deleted(self):
        permission = create_permission('tasks:read', system=True)

        with pytest.raises(ProtectedResourceError):
            PermissionService.update_permission(permission.id, description='Changed')
        with pytest.raises(ProtectedResourceError):
            PermissionService.delete_permission(permission.id)

        permission.refresh_from_db()
        assert permission.description == 'tasks:read'

    def test_delete_permission_reports_affected_roles(self):
        permission = PermissionService.create_permission('tasks:archive', 'Archive', 'tasks')
        create_role('first', [permission])
        create_role('second', [permission])

        assert PermissionService.delete_permission(permission.id) == 2
        assert not Permission.objects.filter(name='tasks:archive').exists()

    def test_unknown_permission_is_not_found(self):
        with pytest.raises(NotFoundError):
            PermissionService.get_permission(uuid.uuid4())
        with pytest.raises(NotFoundError):
            PermissionService.delete_permission('not-a-uuid')

    def test_categories_and_exists(self):
        create_permission('tasks:read')
        create_permission('audit:read')

        assert PermissionService.get_categories() == ['audit', 'tasks']
        assert PermissionService.permission_exists('Tasks:Read').name == 'tasks:read'
        assert PermissionService.permission_exists('tasks:nope') is None


@pytest.mark.django_db
class TestRoleService:
    """Test role lifecycle."""

    def test_create_role_with_permissions(self):
        read = create_permission('tasks:read')
        update = create_permission('tasks:update')

        role = RoleService.create_role('Editor', 'Edits tasks', [read.id, update.id])

        assert role.name == 'editor'
        assert role.permission_names() == ['tasks:read', 'tasks:update']

    def test_create_role_is_all_or_nothing(self):
        read = create_permission('tasks:read')
        missing = uuid.uuid4()

        with pytest.raises(ValidationError) as exc_info:
            RoleService.create_role('editor', '', [read.id, missing])

        assert exc_info.value.details['missing_permission_ids'] == [str(missing)]
        assert not Role.objects.filter(name='editor').exists()

    def test_create_role_rejects_duplicate_name(self):
        create_role('editor')

        with pytest.raises(ConflictError):
            RoleService.create_role('EDITOR')

    def test_update_role_replaces_permissions(self):
        read = create_permission('tasks:read')
        update = create_permission('tasks:update')
        role = create_role('editor', [read])

        RoleService.update_role(role.id, description='New', permission_ids=[update.id])

        role.refresh_from_db()
        assert role.description == 'New'
        assert role.permission_names() == ['tasks:update']

    def test_system_role_cannot_be_renamed(self):
        role = create_role('admin', system=True)

        with pytest.raises(ProtectedResourceError):
            RoleService.update_role(role.id, name='superadmin')

        role.refresh_from_db()
        assert role.name == 'admin'

    def test_system_role_description_can_change(self):
        role = create_role('admin', system=True)

        RoleService.update_role(role.id, name='ADMIN', description='Everything')

        role.refresh_from_db()
        assert role.description == 'Everything'

    def test_system_role_cannot_be_deleted(self):
        role = create_role('user', system=True)

        with pytest.raises(ProtectedResourceError):
            RoleService.delete_role(role.id)

    def test_role_held_by_users_cannot_be_deleted(self):
        role = create_role('editor')
        make_user('a@example.com', roles=[role])
        make_user('b@example.com', roles=[role])

        with pytest.raises(ConflictError) as exc_info:
            RoleService.delete_role(role.id)

        assert '2 user(s)' in exc_info.value.message
        assert exc_info.value.details == {'user_count': 2}

    def test_delete_unused_custom_role(self):
        role = create_role('editor')

        assert RoleService.delete_role(role.id) == 'editor'
        assert not Role.objects.filter(name='editor').exists()

    def test_add_and_remove_permission(self):
        read = create_permission('tasks:read')
        role = create_role('editor')

        RoleService.add_permission(role.id, read.id)
        with pytest.raises(ConflictError):
            RoleService.add_permission(role.id, read.id)

        RoleService.remove_permission(role.id, read.id)
        with pytest.raises(ConflictError):
            RoleService.remove_permission(role.id, read.id)

    def test_system_permission_stays_on_system_role(self):
        read = create_permission('tasks:read', system=True)
        role = create_role('user', [read], system=True)

        with pytest.raises(ProtectedResourceError):
            RoleService.remove_permission(role.id, read.id)

        assert role.permission_names() == ['tasks:read']

    def test_resolve_roles_names_missing_ids(self):
        role = create_role('editor')
        missing = uuid.uuid4()

        with pytest.raises(ValidationError) as exc_info:
            RoleService.resolve_roles([role.id, missing])

        assert exc_info.value.details['missing_role_ids'] == [str(missing)]

    def test_malformed_ids_are_rejected(self):
        with pytest.raises(ValidationError):
            RoleService.resolve_permissions(['not-a-uuid'])


@pytest.mark.django_db
class TestUserRoleService:
    """Test user/role assignment and user removal."""

    @pytest.fixture
    def roles(self):
        return {
            'admin': create_role('admin', system=True),
            'user': create_role('user', system=True),
            'editor': create_role('editor'),
        }

    def test_assign_role(self, roles):
        user = make_user('u@example.com', roles=[roles['user']])

        UserRoleService.assign_role(user, roles['editor'])

        assert user.get_role_names() == ['editor', 'user']

    def test_assign_held_role_conflicts(self, roles):
        user = make_user('u@example.com', roles=[roles['user']])

        with pytest.raises(ConflictError):
            UserRoleService.assign_role(user, roles['user'])

    def test_last_role_cannot_be_removed(self, roles):
        user = make_user('u@example.com', roles=[roles['user']])

        with pytest.raises(ConflictError):
            UserRoleService.remove_role(user, roles['user'])

        assert user.get_role_names() == ['user']

    def test_remove_role_not_held_conflicts(self, roles):
        user = make_user('u@example.com', roles=[roles['user']])

        with pytest.raises(ConflictError):
            UserRoleService.remove_role(user, roles['editor'])

    def test_remove_one_of_several_roles(self, roles):
        user = make_user('u@example.com', roles=[roles['user'], roles['editor']])

        UserRoleService.remove_role(user, roles['editor'])

        assert user.get_role_names() == ['user']

    def test_last_admin_keeps_admin_role(self, roles):
        admin = make_user('admin@example.com', roles=[roles['admin'], roles['user']])

        with pytest.raises(ConflictError):
            UserRoleService.remove_role(admin, roles['admin'])
        with pytest.raises(ConflictError):
            UserRoleService.replace_roles(admin, [roles['user'].id])

        assert admin.get_role_names() == ['admin', 'user']

    def test_admin_role_removable_when_another_admin_exists(self, roles):
        first = make_user('first@example.com', roles=[roles['admin'], roles['user']])
        make_user('second@example.com', roles=[roles['admin']])

        UserRoleService.remove_role(first, roles['admin'])

        assert first.get_role_names() == ['user']

    def test_replace_roles(self, roles):
        user = make_user('u@example.com', roles=[roles['user']])

        result = UserRoleService.replace_roles(user, [roles['editor'].id])

        assert [role.name for role in result] == ['editor']
        assert user.get_role_names() == ['editor']

    def test_replace_roles_requires_one_role(self, roles):
        user = make_user('u@example.com', roles=[roles['user']])

        with pytest.raises(ValidationError):
            UserRoleService.replace_roles(user, [])

    def test_replace_roles_with_unknown_role_changes_nothing(self, roles):
        user = make_user('u@example.com', roles=[roles['user']])

        with pytest.raises(ValidationError):
            UserRoleService.replace_roles(user, [roles['editor'].id, uuid.uuid4()])

        assert user.get_role_names() == ['user']

    def test_delete_user(self, roles):
        admin = make_user('admin@example.com', roles=[roles['admin']])
        user = make_user('u@example.com', roles=[roles['user']])

        UserRoleService.delete_user(user, deleted_by=admin)

        assert not User.objects.filter(email='u@example.com').exists()

    def test_cannot_delete_self(self, roles):
        admin = make_user('admin@example.com', roles=[roles['admin']])

        with pytest.raises(ConflictError):
            UserRoleService.delete_user(admin, deleted_by=admin)

    def test_cannot_delete_last_admin(self, roles):
        admin = make_user('admin@example.com', roles=[roles['admin']])
        operator = make_user('op@example.com', roles=[roles['user']])

        with pytest.raises(ConflictError):
            UserRoleService.delete_user(admin, deleted_by=operator)

    def test_unknown_user_is_not_found(self):
        with pytest.raises(NotFoundError):
            UserRoleService.get_user(uuid.uuid4())


@pytest.mark.django_db
class TestAuthService:
    """Test registration, login and JWT handling."""

    @pytest.fixture(autouse=True)
    def default_role(self):
        return create_role('user', [create_permission('tasks:read')], system=True)

    def test_register_assigns_default_role(self):
        result = AuthService.register_user('Alice', 'Alice@Example.com', TEST_PASSWORD)

        assert result['user'].email == 'alice@example.com'
        assert result['user'].get_role_names() == ['user']
        assert result['permissions'] == ['tasks:read']
        assert AuthService.get_user_from_jwt(result['token']) == result['user']

    def test_register_duplicate_email_conflicts(self):
        AuthService.register_user('Alice', 'alice@example.com', TEST_PASSWORD)

        with pytest.raises(ConflictError):
            AuthService.register_user('Alice', 'ALICE@example.com', TEST_PASSWORD)

    def test_login(self):
        AuthService.register_user('Alice', 'alice@example.com', TEST_PASSWORD)

        result = AuthService.login('alice@example.com', TEST_PASSWORD)

        assert result['user'].last_login is not None
        assert result['permissions'] == ['tasks:read']

    @pytest.mark.parametrize('email,password', [
        ('alice@example.com', 'wrong-password'),
        ('nobody@example.com', TEST_PASSWORD),
    ])
    def test_login_failures_share_one_message(self, email, password):
        AuthService.register_user('Alice', 'alice@example.com', TEST_PASSWORD)

        with pytest.raises(AuthenticationError) as exc_info:
            AuthService.login(email, password)

        assert exc_info.value.message == 'Invalid credentials'

    def test_inactive_user_cannot_login_or_use_token(self):
        result = AuthService.register_user('Alice', 'alice@example.com', TEST_PASSWORD)
        user = result['user']
        user.is_active = False
        user.save()

        with pytest.raises(AuthenticationError):
            AuthService.login('alice@example.com', TEST_PASSWORD)
        assert AuthService.get_user_from_jwt(result['token']) is None

    def test_invalid_token(self):
        assert AuthService.validate_jwt('not-a-token') is None
        assert AuthService.get_user_from_jwt('not-a-token') is None

    def test_expired_token(self, settings):
        user = make_user('u@example.com')
        settings.JWT_EXPIRATION_HOURS = -1

        token = AuthService.generate_jwt(user)

        assert AuthService.validate_jwt(token) is None

    def test_change_password(self):
        user = make_user('u@example.com')

        with pytest.raises(ValidationError):
            AuthService.change_password(user, 'wrong', 'N3w!Passw0rd')

        AuthService.change_password(user, TEST_PASSWORD, 'N3w!Passw0rd')
        user.refresh_from_db()
        assert user.check_password('N3w!Passw0rd')

    def test_update_profile_rejects_taken_email(self):
        make_user('taken@example.com')
        user = make_user('u@example.com')

        with pytest.raises(ConflictError):
            AuthService.update_profile(user, email='TAKEN@example.com')

        updated = AuthService.update_profile(user, name='  New Name ')
        assert updated.name == 'New Name'
