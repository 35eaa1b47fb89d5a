"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Authentication (registration, login, profile, password change)
- Users and their role assignments
- Roles and role permissions
- Permissions
"""
from rest_framework import serializers
from django.contrib.auth.password_validation import validate_password
from apps.rbac.models import User, Permission, PermissionCategory, Role, UserRole


# ===== AUTHENTICATION SERIALIZERS =====

class RegistrationSerializer(serializers.Serializer):
    """Serializer for user registration."""

    name = serializers.CharField(required=True, max_length=150)
    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate_email(self, value):
        """Validate email uniqueness (case-insensitive)."""
        value = User.objects.normalize_email(value)
        if User.objects.filter(email=value).exists():
            raise serializers.ValidationError(
                "A user with this email already exists."
            )
        return value

    def validate_password(self, value):
        """Validate password strength with Django's validators."""
        validate_password(value)
        return value

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Name cannot be empty.")
        return value.strip()


class LoginSerializer(serializers.Serializer):
    """Serializer for user login."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )


class ProfileUpdateSerializer(serializers.Serializer):
    """Serializer for updating the caller's own profile."""

    name = serializers.CharField(required=False, max_length=150)
    email = serializers.EmailField(required=False)

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Name cannot be empty.")
        return value.strip()

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Provide at least one of: name, email.")
        return attrs


class ChangePasswordSerializer(serializers.Serializer):
    """Serializer for changing the caller's password."""

    current_password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )
    new_password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate_new_password(self, value):
        validate_password(value)
        return value

    def validate(self, attrs):
        if attrs['current_password'] == attrs['new_password']:
            raise serializers.ValidationError(
                {'new_password': "New password must differ from the current password."}
            )
        return attrs


# ===== PERMISSION SERIALIZERS =====

class PermissionSerializer(serializers.ModelSerializer):
    """Serializer for Permission model."""

    class Meta:
        model = Permission
        fields = [
            'id', 'name', 'description', 'category', 'is_system_permission',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields


class PermissionCreateSerializer(serializers.Serializer):
    """Serializer for creating permissions."""

    name = serializers.CharField(required=True, max_length=100)
    description = serializers.CharField(required=True)
    category = serializers.CharField(required=True, max_length=20)
    is_system_permission = serializers.BooleanField(required=False, default=False)

    def validate_category(self, value):
        value = value.strip().lower()
        if value not in PermissionCategory.values:
            raise serializers.ValidationError(
                f"Must be one of: {', '.join(PermissionCategory.values)}"
            )
        return value


class PermissionUpdateSerializer(serializers.Serializer):
    """Serializer for updating custom permissions. All fields optional."""

    name = serializers.CharField(required=False, max_length=100)
    description = serializers.CharField(required=False)
    category = serializers.CharField(required=False, max_length=20)


# ===== ROLE SERIALIZERS =====

class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role model with its permissions."""

    permissions = PermissionSerializer(many=True, read_only=True)
    permission_count = serializers.SerializerMethodField()
    user_count = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = [
            'id', 'name', 'description', 'is_system_role',
            'permission_count', 'permissions', 'user_count',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_permission_count(self, obj):
        return len(obj.permissions.all())

    def get_user_count(self, obj):
        return UserRole.objects.holders_count(obj)


class RoleCreateSerializer(serializers.Serializer):
    """Serializer for creating roles."""

    name = serializers.CharField(required=True, max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    permissions = serializers.ListField(
        child=serializers.UUIDField(),
        required=False,
        default=list,
        help_text="List of permission IDs granted by the role"
    )


class RoleUpdateSerializer(serializers.Serializer):
    """Serializer for updating roles. Omitted fields are left unchanged."""

    name = serializers.CharField(required=False, max_length=100)
    description = serializers.CharField(required=False, allow_blank=True)
    permissions = serializers.ListField(
        child=serializers.UUIDField(),
        required=False,
        help_text="Replacement list of permission IDs"
    )


class RolePermissionSerializer(serializers.Serializer):
    """Serializer for adding a permission to a role."""

    permission_id = serializers.UUIDField(required=True)


class RoleSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Role
        fields = ['id', 'name', 'description', 'is_system_role']
        read_only_fields = fields


# ===== USER SERIALIZERS =====

class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model. Never exposes the password hash."""

    roles = RoleSummarySerializer(many=True, read_only=True)

    class Meta:
        model = User
        fields = [
            'id', 'name', 'email', 'is_active', 'roles',
            'last_login', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class UserProfileSerializer(UserSerializer):
    """
    Serializer for the caller's profile (GET /v1/auth/me).

    Adds the effective permission names resolved from every role.
    """

    permissions = serializers.SerializerMethodField()

    class Meta(UserSerializer.Meta):
        fields = UserSerializer.Meta.fields + ['permissions']
        read_only_fields = fields

    def get_permissions(self, obj):
        from apps.rbac.services import PermissionResolver
        return PermissionResolver.resolve_effective_permissions(obj)


class AssignRoleSerializer(serializers.Serializer):
    """Serializer for assigning one role to a user."""

    role_id = serializers.UUIDField(required=True)


class ReplaceRolesSerializer(serializers.Serializer):
    """Serializer for replacing every role of a user."""

    roles = serializers.ListField(
        child=serializers.UUIDField(),
        required=True,
        allow_empty=False,
        help_text="List of role IDs the user should hold"
    )
