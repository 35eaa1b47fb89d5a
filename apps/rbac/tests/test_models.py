"""
Tests for RBAC models.
"""
import pytest
from django.db import IntegrityError
from django.db.models import ProtectedError

from apps.rbac.models import User, Permission, Role, RolePermission, UserRole


@pytest.mark.django_db
class TestUserModel:
    """Test User model."""

    def test_create_user_hashes_password(self):
        user = User.objects.create_user(email='alice@example.com', password='S3cure!Passw0rd', name='Alice')

        assert user.password_hash != 'S3cure!Passw0rd'
        assert user.check_password('S3cure!Passw0rd')
        assert not user.check_password('wrong')

    def test_email_is_stored_lowercased(self):
        user = User.objects.create_user(email='  Alice@Example.COM ', password='x', name='Alice')

        assert user.email == 'alice@example.com'
        assert User.objects.by_email('ALICE@example.com') == user

    def test_email_is_unique_case_insensitively(self):
        User.objects.create_user(email='bob@example.com', password='x', name='Bob')

        with pytest.raises(IntegrityError):
            User.objects.create_user(email='BOB@example.com', password='x', name='Bob 2')

    def test_create_user_requires_email(self):
        with pytest.raises(ValueError):
            User.objects.create_user(email='', password='x')

    def test_only_superusers_reach_django_admin(self):
        user = User.objects.create_user(email='u@example.com', password='x', name='U')
        superuser = User.objects.create_superuser(email='s@example.com', password='x', name='S')

        assert not user.is_staff
        assert superuser.is_staff
        assert superuser.has_perm('rbac.view_user')
        assert not user.has_perm('rbac.view_user')

    def test_update_last_login(self):
        user = User.objects.create_user(email='u@example.com', password='x', name='U')
        assert user.last_login is None

        user.update_last_login()
        user.refresh_from_db()

        assert user.last_login is not None


@pytest.mark.django_db
class TestPermissionModel:
    """Test Permission model."""

    def test_name_and_category_are_lowercased(self):
        permission = Permission.objects.create(
            name='Tasks:Archive', description='Archive tasks', category='TASKS'
        )

        assert permission.name == 'tasks:archive'
        assert permission.category == 'tasks'

    def test_system_flag_cannot_change_after_creation(self):
        permission = Permission.objects.create(
            name='tasks:archive', description='Archive tasks', category='tasks'
        )
        permission.is_system_permission = True

        with pytest.raises(ValueError):
            permission.save()

    def test_get_categories_is_sorted_and_distinct(self):
        Permission.objects.create(name='tasks:a', description='a', category='tasks')
        Permission.objects.create(name='tasks:b', description='b', category='tasks')
        Permission.objects.create(name='audit:a', description='a', category='audit')

        assert Permission.objects.get_categories() == ['audit', 'tasks']


@pytest.mark.django_db
class TestRoleModel:
    """Test Role and its join tables."""

    def test_role_name_is_lowercased(self):
        role = Role.objects.create(name='Editor')

        assert role.name == 'editor'
        assert Role.objects.by_name('EDITOR') == role

    def test_add_permission_is_idempotent(self):
        role = Role.objects.create(name='editor')
        permission = Permission.objects.create(name='tasks:read', description='Read', category='tasks')

        assert role.add_permission(permission) is True
        assert role.add_permission(permission) is False
        assert RolePermission.objects.for_role(role).count() == 1
        assert role.has_permission('TASKS:READ')

    def test_deleting_permission_removes_it_from_roles(self):
        role = Role.objects.create(name='editor')
        permission = Permission.objects.create(name='tasks:read', description='Read', category='tasks')
        role.add_permission(permission)

        permission.delete()

        assert role.permission_names() == []

    def test_held_role_is_protected_from_deletion(self):
        role = Role.objects.create(name='editor')
        user = User.objects.create_user(email='u@example.com', password='x', name='U')
        UserRole.objects.create(user=user, role=role)

        with pytest.raises(ProtectedError):
            role.delete()

    def test_holders_count_and_with_role(self):
        role = Role.objects.create(name='editor')
        first = User.objects.create_user(email='a@example.com', password='x', name='A')
        User.objects.create_user(email='b@example.com', password='x', name='B')
        UserRole.objects.create(user=first, role=role)

        assert UserRole.objects.holders_count(role) == 1
        assert list(User.objects.with_role('editor')) == [first]
        assert first.get_role_names() == ['editor']
