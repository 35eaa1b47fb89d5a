"""
RBAC models for role-based access control.

Implements:
- User identity with hashed credentials
- Permission (canonical ``category:action`` capabilities)
- Role (named bundles of permissions)
- RolePermission (maps permissions to roles)
- UserRole (maps roles to users)
"""
import logging
from django.db import models
from django.contrib.auth.hashers import make_password, check_password
from apps.core.models import BaseModel

logger = logging.getLogger(__name__)


class PermissionCategory(models.TextChoices):
    TASKS = 'tasks', 'Tasks'
    USERS = 'users', 'Users'
    ROLES = 'roles', 'Roles'
    PERMISSIONS = 'permissions', 'Permissions'
    AUDIT = 'audit', 'Audit'
    REPORTS = 'reports', 'Reports'
    SYSTEM = 'system', 'System'


class UserManager(models.Manager):
    """
    Manager for User queries.

    Compatible with Django's authentication system and admin interface.
    """

    def active(self):
        """Return only active users."""
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find user by email (case-insensitive)."""
        return self.filter(email=self.normalize_email(email)).first()

    def with_role(self, role_name):
        """Users holding the named role."""
        return self.filter(user_roles__role__name=role_name.lower()).distinct()

    def create_user(self, email, password=None, **extra_fields):
        """
        Create a new user with hashed password.

        Roles are assigned separately through UserRoleService.
        """
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """
        Create a superuser with Django admin access.

        This method is required for Django's createsuperuser command.
        """
        extra_fields.setdefault('is_superuser', True)

        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True')

        return self.create_user(email, password, **extra_fields)

    @staticmethod
    def normalize_email(email):
        """Emails are unique case-insensitively, so they are stored lowercased."""
        return (email or '').strip().lower()

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: self.normalize_email(email)})


class User(BaseModel):
    """
    User account holding credentials and one or more roles.

    This is the AUTH_USER_MODEL for the entire application, including Django admin.
    """

    name = models.CharField(
        max_length=150,
        help_text="Display name"
    )
    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique, stored lowercased)"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Hashed password",
        db_column='password_hash'
    )

    roles = models.ManyToManyField(
        'Role',
        through='UserRole',
        through_fields=('user', 'role'),
        related_name='users',
        help_text="Roles assigned to this user"
    )

    # Status
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Django admin access"
    )

    # Activity Tracking
    last_login = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last successful login timestamp"
    )

    # Django admin compatibility
    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = ['name']

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'created_at'], name='users_active_created_idx'),
        ]

    def __str__(self):
        return self.email

    def save(self, *args, **kwargs):
        self.email = User.objects.normalize_email(self.email)
        super().save(*args, **kwargs)

    @property
    def password(self):
        """
        Alias for password_hash to maintain Django admin compatibility.
        """
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        """Check if provided password matches stored hash."""
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        """Set user password (hashes automatically)."""
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        return self.name or self.email

    def get_short_name(self):
        return self.name or self.email

    def get_role_names(self):
        """Names of the roles currently assigned, sorted."""
        return sorted(self.roles.values_list('name', flat=True))

    def has_role(self, role_name):
        return self.roles.filter(name=role_name.lower()).exists()

    def update_last_login(self):
        """Update last_login to current time."""
        from django.utils import timezone
        self.last_login = timezone.now()
        self.save(update_fields=['last_login'])

    @property
    def is_authenticated(self):
        """
        Always return True for User instances.
        This is required for Django authentication compatibility.
        """
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        """
        Return True if user is a superuser.
        This is required for Django admin access.
        """
        return self.is_superuser

    def has_perm(self, perm, obj=None):
        """
        Django admin permission check. API permissions are resolved through
        PermissionResolver instead.
        """
        return self.is_active and self.is_superuser

    def has_perms(self, perm_list, obj=None):
        return self.is_active and self.is_superuser

    def has_module_perms(self, app_label):
        return self.is_active and self.is_superuser

    def natural_key(self):
        return (self.email,)


class PermissionManager(models.Manager):
    """Manager for Permission queries."""

    def by_name(self, name):
        """Find permission by name (case-insensitive)."""
        return self.filter(name=(name or '').strip().lower()).first()

    def by_category(self, category):
        """Get all permissions in a category."""
        return self.filter(category=category.lower())

    def system_permissions(self):
        return self.filter(is_system_permission=True)

    def get_categories(self):
        """Distinct categories currently in use, sorted."""
        return list(
            self.order_by('category').values_list('category', flat=True).distinct()
        )


class Permission(BaseModel):
    """
    Permission definitions in ``category:action`` form.

    System permissions are seeded during deployment and cannot be
    updated or deleted.
    """

    name = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="Unique permission name (e.g., 'tasks:create')"
    )
    description = models.TextField(
        help_text="What this permission grants"
    )
    category = models.CharField(
        max_length=20,
        choices=PermissionCategory.choices,
        db_index=True,
        help_text="Permission category"
    )
    is_system_permission = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Platform-defined permission, protected from update and deletion"
    )

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['category', 'name']

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        self.name = self.name.strip().lower()
        self.category = self.category.strip().lower()

        if not self._state.adding:
            stored = Permission.objects.filter(pk=self.pk).values_list(
                'is_system_permission', flat=True
            ).first()
            if stored is not None and stored != self.is_system_permission:
                raise ValueError("is_system_permission cannot be changed after creation")

        super().save(*args, **kwargs)


class RoleManager(models.Manager):
    """Manager for Role queries."""

    def by_name(self, name):
        """Find role by name (case-insensitive)."""
        return self.filter(name=(name or '').strip().lower()).first()


class Role(BaseModel):
    """
    Named bundle of permissions.

    System roles (admin, user) are seeded and cannot be renamed or deleted.
    """

    name = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="Role name (stored lowercased, e.g., 'admin')"
    )
    description = models.TextField(
        blank=True,
        help_text="Role description"
    )
    permissions = models.ManyToManyField(
        Permission,
        through='RolePermission',
        related_name='roles',
        help_text="Permissions granted by this role"
    )
    is_system_role = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Platform-defined role, protected from rename and deletion"
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['name']

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        self.name = self.name.strip().lower()
        super().save(*args, **kwargs)

    def permission_names(self):
        return sorted(self.permissions.values_list('name', flat=True))

    def has_permission(self, permission_name):
        """Check if role has a specific permission."""
        return self.role_permissions.filter(
            permission__name=permission_name.lower()
        ).exists()

    def add_permission(self, permission):
        """Grant a permission to this role (idempotent)."""
        _, created = RolePermission.objects.grant_permission(self, permission)
        return created


class RolePermissionManager(models.Manager):
    """Manager for RolePermission queries."""

    def for_role(self, role):
        return self.filter(role=role)

    def for_permission(self, permission):
        return self.filter(permission=permission)

    def grant_permission(self, role, permission):
        """Grant permission to role (idempotent)."""
        return self.get_or_create(role=role, permission=permission)

    def revoke_permission(self, role, permission):
        """Revoke permission from role."""
        return self.filter(role=role, permission=permission).delete()


class RolePermission(BaseModel):
    """
    Maps permissions to roles.

    Deleting a permission removes it from every role that holds it.
    """

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Role that grants this permission"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Permission being granted"
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('role', 'permission')]
        ordering = ['role', 'permission']

    def __str__(self):
        return f"{self.role.name} -> {self.permission.name}"


class UserRoleManager(models.Manager):
    """Manager for UserRole queries."""

    def for_user(self, user):
        return self.filter(user=user)

    def for_role(self, role):
        return self.filter(role=role)

    def holders_count(self, role):
        """Number of distinct users holding a role."""
        return self.filter(role=role).values('user').distinct().count()


class UserRole(BaseModel):
    """
    Maps roles to users.

    A user can have multiple roles; their permissions are unioned.
    Roles still held by a user cannot be deleted.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='user_roles',
        help_text="User holding the role"
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.PROTECT,
        related_name='user_roles',
        help_text="Role assigned to the user"
    )
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        help_text="User who assigned this role"
    )

    objects = UserRoleManager()

    class Meta:
        db_table = 'user_roles'
        unique_together = [('user', 'role')]
        ordering = ['user', 'role']

    def __str__(self):
        return f"{self.user.email} - {self.role.name}"
