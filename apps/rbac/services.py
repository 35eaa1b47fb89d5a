"""
RBAC and Authentication services.

Implements:
- PermissionResolver: effective permission resolution for a user
- PermissionService: permission registry lifecycle
- RoleService: role lifecycle and role/permission assignment
- UserRoleService: user/role assignment and user removal
- AuthService: JWT authentication, registration, login, profile
"""
import logging
import re
import uuid
from typing import Optional, Dict, Any, List, Iterable
from datetime import timedelta
from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone
import jwt

from apps.core.exceptions import (
    ValidationError,
    AuthenticationError,
    NotFoundError,
    ConflictError,
    ProtectedResourceError,
    InternalError,
)
from apps.core.logging import SecurityLogger
from apps.rbac.models import (
    User, Permission, PermissionCategory, Role, RolePermission, UserRole,
)

logger = logging.getLogger(__name__)

PERMISSION_NAME_RE = re.compile(r'^[a-z]+:[a-z][a-z0-9_-]*$')


def _admin_role_name():
    return getattr(settings, 'ADMIN_ROLE_NAME', 'admin')


def _parse_ids(ids: Iterable, label: str) -> List[uuid.UUID]:
    """Parse a list of UUID strings, rejecting malformed values."""
    parsed = []
    invalid = []
    for value in ids or []:
        try:
            parsed.append(value if isinstance(value, uuid.UUID) else uuid.UUID(str(value)))
        except (TypeError, ValueError, AttributeError):
            invalid.append(str(value))
    if invalid:
        raise ValidationError(
            f"Invalid {label} id(s)",
            details={'invalid_ids': invalid}
        )
    # Preserve order, drop duplicates
    return list(dict.fromkeys(parsed))


class PermissionResolver:
    """
    Compute a user's effective permissions.

    Effective permissions are the deduplicated union of the permissions of
    every role assigned to the user. There is no precedence, no deny rules
    and no role inheritance. Nothing is cached: every call reads storage.
    """

    @classmethod
    def resolve_effective_permissions(cls, user: User) -> List[str]:
        """
        Resolve all permission names granted to a user.

        Args:
            user: User instance

        Returns:
            Sorted list of permission names (e.g., ['tasks:create', 'tasks:read'])
        """
        names = set()

        for role in user.roles.prefetch_related('permissions'):
            for permission in role.permissions.all():
                names.add(permission.name)

        return sorted(names)

    @classmethod
    def has_permission(cls, user: User, permission_name: str) -> bool:
        """
        Check if user holds a permission through any of their roles.

        Stops at the first role that grants it; the answer always equals
        membership in resolve_effective_permissions(user).
        """
        permission_name = permission_name.strip().lower()

        for role in user.roles.all():
            if role.role_permissions.filter(permission__name=permission_name).exists():
                return True

        return False


class PermissionService:
    """
    Service for the permission registry.
    """

    @classmethod
    def list_permissions(cls, category: Optional[str] = None):
        """Permissions ordered by category then name, optionally filtered."""
        queryset = Permission.objects.all()
        if category:
            queryset = queryset.filter(category=category.strip().lower())
        return queryset

    @classmethod
    def get_categories(cls) -> List[str]:
        return Permission.objects.get_categories()

    @classmethod
    def get_permission(cls, permission_id) -> Permission:
        try:
            return Permission.objects.get(id=permission_id)
        except (Permission.DoesNotExist, ValueError, TypeError, DjangoValidationError):
            raise NotFoundError('Permission not found')

    @classmethod
    def permission_exists(cls, name: str) -> Optional[Permission]:
        """Return the permission with this name, or None."""
        return Permission.objects.by_name(name)

    @classmethod
    def _validate(cls, name: str, description: str, category: str):
        if category not in PermissionCategory.values:
            raise ValidationError(
                f"Invalid category '{category}'",
                details={'category': [f"Must be one of: {', '.join(PermissionCategory.values)}"]}
            )

        if not PERMISSION_NAME_RE.match(name):
            raise ValidationError(
                "Permission name must use the format 'category:action'",
                details={'name': ["Expected lowercase 'category:action'"]}
            )

        if name.split(':', 1)[0] != category:
            raise ValidationError(
                f"Permission name '{name}' does not belong to category '{category}'",
                details={'name': ['Name prefix must match the category']}
            )

        if not (description or '').strip():
            raise ValidationError(
                'Description is required',
                details={'description': ['This field may not be blank.']}
            )

    @classmethod
    @transaction.atomic
    def create_permission(cls, name: str, description: str, category: str,
                          is_system_permission: bool = False) -> Permission:
        """
        Create a permission.

        Args:
            name: Permission name in 'category:action' form (lowercased)
            description: Non-empty description
            category: One of PermissionCategory (lowercased)
            is_system_permission: Protect from update/delete (set once)

        Returns:
            Created Permission

        Raises:
            ValidationError: Malformed name, unknown category, empty description
            ConflictError: A permission with this name already exists
        """
        name = (name or '').strip().lower()
        category = (category or '').strip().lower()
        cls._validate(name, description, category)

        if Permission.objects.filter(name=name).exists():
            raise ConflictError(f"Permission '{name}' already exists")

        permission = Permission.objects.create(
            name=name,
            description=description.strip(),
            category=category,
            is_system_permission=is_system_permission,
        )

        logger.info(
            f"Permission created: {name}",
            extra={'permission': name, 'category': category}
        )
        return permission

    @classmethod
    @transaction.atomic
    def update_permission(cls, permission_id, name: Optional[str] = None,
                          description: Optional[str] = None,
                          category: Optional[str] = None) -> Permission:
        """
        Update a custom permission.

        Raises:
            NotFoundError: Unknown id
            ProtectedResourceError: System permission
            ValidationError / ConflictError: Invalid or duplicate values
        """
        try:
            permission = Permission.objects.select_for_update().get(id=permission_id)
        except (Permission.DoesNotExist, ValueError, TypeError, DjangoValidationError):
            raise NotFoundError('Permission not found')

        if permission.is_system_permission:
            raise ProtectedResourceError('System permissions cannot be modified')

        new_name = (name or permission.name).strip().lower()
        new_category = (category or permission.category).strip().lower()
        new_description = description if description is not None else permission.description
        cls._validate(new_name, new_description, new_category)

        if new_name != permission.name and Permission.objects.filter(name=new_name).exists():
            raise ConflictError(f"Permission '{new_name}' already exists")

        permission.name = new_name
        permission.category = new_category
        permission.description = new_description.strip()
        permission.save()

        return permission

    @classmethod
    @transaction.atomic
    def delete_permission(cls, permission_id) -> int:
        """
        Delete a custom permission and remove it from every role.

        Returns:
            Number of roles the permission was removed from
        """
        try:
            permission = Permission.objects.select_for_update().get(id=permission_id)
        except (Permission.DoesNotExist, ValueError, TypeError, DjangoValidationError):
            raise NotFoundError('Permission not found')

        if permission.is_system_permission:
            raise ProtectedResourceError('System permissions cannot be deleted')

        role_count = RolePermission.objects.for_permission(permission).count()
        name = permission.name
        permission.delete()

        logger.info(
            f"Permission deleted: {name}",
            extra={'permission': name, 'role_count': role_count}
        )
        return role_count


class RoleService:
    """
    Service for role lifecycle and role/permission assignment.
    """

    @classmethod
    def list_roles(cls, include_system: bool = True):
        queryset = Role.objects.prefetch_related('permissions')
        if not include_system:
            queryset = queryset.filter(is_system_role=False)
        return queryset

    @classmethod
    def get_role(cls, role_id) -> Role:
        try:
            return Role.objects.prefetch_related('permissions').get(id=role_id)
        except (Role.DoesNotExist, ValueError, TypeError, DjangoValidationError):
            raise NotFoundError('Role not found')

    @classmethod
    def resolve_permissions(cls, permission_ids) -> List[Permission]:
        """
        Load every referenced permission or fail without side effects.

        Raises:
            ValidationError: If any id is malformed or does not exist
        """
        ids = _parse_ids(permission_ids, 'permission')
        found = {p.id: p for p in Permission.objects.filter(id__in=ids)}
        missing = [str(pid) for pid in ids if pid not in found]

        if missing:
            raise ValidationError(
                'One or more permissions do not exist',
                details={'missing_permission_ids': missing}
            )

        return [found[pid] for pid in ids]

    @classmethod
    def resolve_roles(cls, role_ids) -> List[Role]:
        """Load every referenced role or raise ValidationError naming the missing ids."""
        ids = _parse_ids(role_ids, 'role')
        found = {r.id: r for r in Role.objects.filter(id__in=ids)}
        missing = [str(rid) for rid in ids if rid not in found]

        if missing:
            raise ValidationError(
                'One or more roles do not exist',
                details={'missing_role_ids': missing}
            )

        return [found[rid] for rid in ids]

    @classmethod
    @transaction.atomic
    def create_role(cls, name: str, description: str = '', permission_ids=None,
                    is_system_role: bool = False) -> Role:
        """
        Create a role with its permissions.

        All referenced permissions must exist; otherwise nothing is persisted.

        Args:
            name: Role name (lowercased)
            description: Role description
            permission_ids: Iterable of permission ids
            is_system_role: Protect from rename/delete

        Returns:
            Created Role
        """
        name = (name or '').strip().lower()
        if not name:
            raise ValidationError('Role name is required', details={'name': ['This field may not be blank.']})

        if Role.objects.filter(name=name).exists():
            raise ConflictError(f"Role '{name}' already exists")

        permissions = cls.resolve_permissions(permission_ids)

        role = Role.objects.create(
            name=name,
            description=description or '',
            is_system_role=is_system_role,
        )
        RolePermission.objects.bulk_create([
            RolePermission(role=role, permission=permission) for permission in permissions
        ])

        logger.info(
            f"Role created: {name}",
            extra={'role': name, 'permission_count': len(permissions)}
        )
        return role

    @classmethod
    def set_permissions(cls, role: Role, permissions: List[Permission]):
        """Make the role's permission set exactly ``permissions``."""
        wanted = {p.id for p in permissions}
        role.role_permissions.exclude(permission_id__in=wanted).delete()
        existing = set(role.role_permissions.values_list('permission_id', flat=True))
        RolePermission.objects.bulk_create([
            RolePermission(role=role, permission=p) for p in permissions if p.id not in existing
        ])

    @classmethod
    @transaction.atomic
    def update_role(cls, role_id, name: Optional[str] = None,
                    description: Optional[str] = None, permission_ids=None) -> Role:
        """
        Update a role.

        Raises:
            NotFoundError: Unknown id
            ProtectedResourceError: Renaming a system role
            ConflictError: New name already in use
            ValidationError: A referenced permission does not exist
        """
        try:
            role = Role.objects.select_for_update().get(id=role_id)
        except (Role.DoesNotExist, ValueError, TypeError, DjangoValidationError):
            raise NotFoundError('Role not found')

        if name is not None:
            new_name = name.strip().lower()
            if not new_name:
                raise ValidationError('Role name is required', details={'name': ['This field may not be blank.']})
            if new_name != role.name:
                if role.is_system_role:
                    raise ProtectedResourceError('System roles cannot be renamed')
                if Role.objects.filter(name=new_name).exclude(id=role.id).exists():
                    raise ConflictError(f"Role '{new_name}' already exists")
                role.name = new_name

        permissions = None
        if permission_ids is not None:
            permissions = cls.resolve_permissions(permission_ids)

        if description is not None:
            role.description = description

        role.save()

        if permissions is not None:
            cls.set_permissions(role, permissions)

        return role

    @classmethod
    @transaction.atomic
    def delete_role(cls, role_id) -> str:
        """
        Delete a role nobody holds.

        Raises:
            NotFoundError: Unknown id
            ConflictError: Users still hold the role (message names the count)
            ProtectedResourceError: System role

        Returns:
            Name of the deleted role
        """
        try:
            role = Role.objects.select_for_update().get(id=role_id)
        except (Role.DoesNotExist, ValueError, TypeError, DjangoValidationError):
            raise NotFoundError('Role not found')

        holders = UserRole.objects.holders_count(role)
        if holders:
            raise ConflictError(
                f"Cannot delete role '{role.name}': {holders} user(s) still have it assigned",
                details={'user_count': holders}
            )

        if role.is_system_role:
            raise ProtectedResourceError('System roles cannot be deleted')

        name = role.name
        role.delete()
        logger.info(f"Role deleted: {name}", extra={'role': name})
        return name

    @classmethod
    @transaction.atomic
    def add_permission(cls, role_id, permission_id) -> Role:
        """
        Add a permission to a role.

        Raises:
            NotFoundError: Unknown role or permission
            ConflictError: The role already has the permission
        """
        try:
            role = Role.objects.select_for_update().get(id=role_id)
        except (Role.DoesNotExist, ValueError, TypeError, DjangoValidationError):
            raise NotFoundError('Role not found')

        permission = PermissionService.get_permission(permission_id)

        if not role.add_permission(permission):
            raise ConflictError(f"Role '{role.name}' already has permission '{permission.name}'")

        return role

    @classmethod
    @transaction.atomic
    def remove_permission(cls, role_id, permission_id) -> Role:
        """
        Remove a permission from a role.

        Raises:
            NotFoundError: Unknown role or permission
            ProtectedResourceError: System permission on a system role
            ConflictError: The role does not have the permission
        """
        try:
            role = Role.objects.select_for_update().get(id=role_id)
        except (Role.DoesNotExist, ValueError, TypeError, DjangoValidationError):
            raise NotFoundError('Role not found')

        permission = PermissionService.get_permission(permission_id)

        if role.is_system_role and permission.is_system_permission:
            raise ProtectedResourceError('System permissions cannot be removed from a system role')

        deleted, _ = RolePermission.objects.revoke_permission(role, permission)
        if not deleted:
            raise ConflictError(f"Role '{role.name}' does not have permission '{permission.name}'")

        return role


class UserRoleService:
    """
    Service for user/role assignment and user removal.

    Users always keep at least one role, and the system always keeps at
    least one admin.
    """

    @classmethod
    def get_user(cls, user_id) -> User:
        try:
            return User.objects.get(id=user_id)
        except (User.DoesNotExist, ValueError, TypeError, DjangoValidationError):
            raise NotFoundError('User not found')

    @classmethod
    def admin_count(cls) -> int:
        return UserRole.objects.filter(role__name=_admin_role_name()).values('user').distinct().count()

    @classmethod
    def is_last_admin(cls, user: User) -> bool:
        return user.has_role(_admin_role_name()) and cls.admin_count() <= 1

    @classmethod
    def _lock_user(cls, user: User) -> User:
        return User.objects.select_for_update().get(id=user.id)

    @classmethod
    @transaction.atomic
    def assign_role(cls, user: User, role: Role, assigned_by: Optional[User] = None) -> UserRole:
        """
        Assign a role to a user.

        Raises:
            ConflictError: User already has the role
        """
        user = cls._lock_user(user)

        if UserRole.objects.filter(user=user, role=role).exists():
            raise ConflictError(f"User already has role '{role.name}'")

        user_role = UserRole.objects.create(user=user, role=role, assigned_by=assigned_by)

        logger.info(
            f"Role '{role.name}' assigned to user {user.id}",
            extra={'role': role.name, 'target_user_id': str(user.id)}
        )
        return user_role

    @classmethod
    @transaction.atomic
    def remove_role(cls, user: User, role: Role, removed_by: Optional[User] = None):
        """
        Remove a role from a user.

        Raises:
            ConflictError: User does not hold the role, it is their last
                role, or it would remove the last admin
        """
        user = cls._lock_user(user)
        held = list(user.roles.values_list('id', flat=True))

        if role.id not in held:
            raise ConflictError(f"User does not have role '{role.name}'")

        if len(held) <= 1:
            raise ConflictError('Cannot remove the last role of a user')

        if role.name == _admin_role_name() and cls.admin_count() <= 1:
            SecurityLogger.log_last_admin_protection(removed_by, user, 'remove_role')
            raise ConflictError('Cannot remove the admin role from the last admin')

        UserRole.objects.filter(user=user, role=role).delete()

        logger.info(
            f"Role '{role.name}' removed from user {user.id}",
            extra={'role': role.name, 'target_user_id': str(user.id)}
        )

    @classmethod
    @transaction.atomic
    def replace_roles(cls, user: User, role_ids, changed_by: Optional[User] = None) -> List[Role]:
        """
        Replace every role of a user.

        Raises:
            ValidationError: Empty list or unknown role ids
            ConflictError: Would strip admin from the last admin
        """
        ids = _parse_ids(role_ids, 'role')
        if not ids:
            raise ValidationError('At least one role is required', details={'roles': ['This list may not be empty.']})

        roles = RoleService.resolve_roles(ids)

        user = cls._lock_user(user)

        admin_name = _admin_role_name()
        if (user.has_role(admin_name)
                and admin_name not in {r.name for r in roles}
                and cls.admin_count() <= 1):
            SecurityLogger.log_last_admin_protection(changed_by, user, 'replace_roles')
            raise ConflictError('Cannot remove the admin role from the last admin')

        wanted = {r.id for r in roles}
        UserRole.objects.filter(user=user).exclude(role_id__in=wanted).delete()
        existing = set(UserRole.objects.filter(user=user).values_list('role_id', flat=True))
        UserRole.objects.bulk_create([
            UserRole(user=user, role=role, assigned_by=changed_by)
            for role in roles if role.id not in existing
        ])

        return roles

    @classmethod
    @transaction.atomic
    def delete_user(cls, user: User, deleted_by: User):
        """
        Delete a user account and everything they own.

        Raises:
            ConflictError: Deleting yourself, or deleting the last admin
        """
        if deleted_by is not None and user.id == deleted_by.id:
            raise ConflictError('You cannot delete your own account')

        user = cls._lock_user(user)

        if cls.is_last_admin(user):
            SecurityLogger.log_last_admin_protection(deleted_by, user, 'delete_user')
            raise ConflictError('Cannot delete the last admin')

        user_id = user.id
        user.delete()

        logger.info(
            f"User deleted: {user_id}",
            extra={'target_user_id': str(user_id)}
        )


class AuthService:
    """
    Service for authentication operations: JWT, registration, login, profile.
    """

    @classmethod
    def generate_jwt(cls, user: User) -> str:
        """
        Generate JWT token for a user.

        Args:
            user: User instance

        Returns:
            JWT token string
        """
        now = timezone.now()
        payload = {
            'user_id': str(user.id),
            'email': user.email,
            'exp': now + timedelta(hours=getattr(settings, 'JWT_EXPIRATION_HOURS', 24)),
            'iat': now,
        }

        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
        )

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """
        Validate JWT token and return payload.

        Returns:
            Decoded payload dict or None if invalid or expired
        """
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def get_user_from_jwt(cls, token: str) -> Optional[User]:
        """
        Extract and return the active user a JWT token was issued for.

        Returns:
            User instance or None if invalid
        """
        payload = cls.validate_jwt(token)
        if not payload:
            return None

        user_id = payload.get('user_id')
        if not user_id:
            return None

        try:
            return User.objects.get(id=user_id, is_active=True)
        except (User.DoesNotExist, ValueError, DjangoValidationError):
            return None

    @classmethod
    def build_auth_payload(cls, user: User, token: Optional[str] = None) -> Dict[str, Any]:
        return {
            'user': user,
            'token': token or cls.generate_jwt(user),
            'permissions': PermissionResolver.resolve_effective_permissions(user),
        }

    @classmethod
    @transaction.atomic
    def register_user(cls, name: str, email: str, password: str) -> Dict[str, Any]:
        """
        Register a new user with the default role.

        Args:
            name: Display name
            email: User email (lowercased)
            password: Raw password (will be hashed)

        Returns:
            Dict with user, token and effective permissions
        """
        email = User.objects.normalize_email(email)
        if User.objects.filter(email=email).exists():
            raise ConflictError('A user with this email already exists')

        default_role_name = getattr(settings, 'DEFAULT_USER_ROLE', 'user')
        default_role = Role.objects.by_name(default_role_name)
        if default_role is None:
            logger.error(
                f"Default role '{default_role_name}' is missing; run seed_roles",
                extra={'role': default_role_name}
            )
            raise InternalError('Registration is not available')

        user = User(name=name.strip(), email=email)
        user.set_password(password)
        user.save()

        UserRole.objects.create(user=user, role=default_role)

        logger.info(f"User registered: {user.id}", extra={'target_user_id': str(user.id)})

        return cls.build_auth_payload(user)

    @classmethod
    def login(cls, email: str, password: str, ip_address: str = None,
              user_agent: str = None) -> Dict[str, Any]:
        """
        Authenticate user and return JWT token with effective permissions.

        Raises:
            AuthenticationError: Unknown email, wrong password or inactive
                account, always with the same generic message
        """
        user = User.objects.by_email(email)

        reason = None
        if user is None:
            reason = 'unknown_email'
        elif not user.check_password(password):
            reason = 'invalid_password'
        elif not user.is_active:
            reason = 'inactive_account'

        if reason:
            SecurityLogger.log_failed_login(
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                reason=reason
            )
            raise AuthenticationError('Invalid credentials')

        user.update_last_login()
        return cls.build_auth_payload(user)

    @classmethod
    @transaction.atomic
    def update_profile(cls, user: User, name: Optional[str] = None,
                       email: Optional[str] = None) -> User:
        """Update the caller's name and/or email."""
        user = User.objects.select_for_update().get(id=user.id)

        if email is not None:
            email = User.objects.normalize_email(email)
            if User.objects.filter(email=email).exclude(id=user.id).exists():
                raise ConflictError('A user with this email already exists')
            user.email = email

        if name is not None:
            user.name = name.strip()

        user.save()
        return user

    @classmethod
    def change_password(cls, user: User, current_password: str, new_password: str):
        """
        Change the caller's password.

        Raises:
            ValidationError: Current password is wrong
        """
        if not user.check_password(current_password):
            raise ValidationError(
                'Current password is incorrect',
                details={'current_password': ['Current password is incorrect']}
            )

        user.set_password(new_password)
        user.save(update_fields=['password_hash', 'updated_at'])
