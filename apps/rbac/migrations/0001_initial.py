# Initial RBAC schema: users, permissions, roles and their assignments

import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Permission',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('name', models.CharField(db_index=True, help_text="Unique permission name (e.g., 'tasks:create')", max_length=100, unique=True)),
                ('description', models.TextField(help_text='What this permission grants')),
                ('category', models.CharField(choices=[('tasks', 'Tasks'), ('users', 'Users'), ('roles', 'Roles'), ('permissions', 'Permissions'), ('audit', 'Audit'), ('reports', 'Reports'), ('system', 'System')], db_index=True, help_text='Permission category', max_length=20)),
                ('is_system_permission', models.BooleanField(db_index=True, default=False, help_text='Platform-defined permission, protected from update and deletion')),
            ],
            options={
                'db_table': 'permissions',
                'ordering': ['category', 'name'],
            },
        ),
        migrations.CreateModel(
            name='Role',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('name', models.CharField(db_index=True, help_text="Role name (stored lowercased, e.g., 'admin')", max_length=100, unique=True)),
                ('description', models.TextField(blank=True, help_text='Role description')),
                ('is_system_role', models.BooleanField(db_index=True, default=False, help_text='Platform-defined role, protected from rename and deletion')),
            ],
            options={
                'db_table': 'roles',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('name', models.CharField(help_text='Display name', max_length=150)),
                ('email', models.EmailField(db_index=True, help_text='User email address (unique, stored lowercased)', max_length=254, unique=True)),
                ('password_hash', models.CharField(db_column='password_hash', help_text='Hashed password', max_length=255)),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Whether user account is active')),
                ('is_superuser', models.BooleanField(default=False, help_text='Django admin access')),
                ('last_login', models.DateTimeField(blank=True, help_text='Last successful login timestamp', null=True)),
            ],
            options={
                'db_table': 'users',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['is_active', 'created_at'], name='users_active_created_idx')],
            },
        ),
        migrations.CreateModel(
            name='RolePermission',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('permission', models.ForeignKey(help_text='Permission being granted', on_delete=django.db.models.deletion.CASCADE, related_name='role_permissions', to='rbac.permission')),
                ('role', models.ForeignKey(help_text='Role that grants this permission', on_delete=django.db.models.deletion.CASCADE, related_name='role_permissions', to='rbac.role')),
            ],
            options={
                'db_table': 'role_permissions',
                'ordering': ['role', 'permission'],
                'unique_together': {('role', 'permission')},
            },
        ),
        migrations.CreateModel(
            name='UserRole',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('assigned_by', models.ForeignKey(blank=True, help_text='User who assigned this role', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('role', models.ForeignKey(help_text='Role assigned to the user', on_delete=django.db.models.deletion.PROTECT, related_name='user_roles', to='rbac.role')),
                ('user', models.ForeignKey(help_text='User holding the role', on_delete=django.db.models.deletion.CASCADE, related_name='user_roles', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'user_roles',
                'ordering': ['user', 'role'],
                'unique_together': {('user', 'role')},
            },
        ),
        migrations.AddField(
            model_name='role',
            name='permissions',
            field=models.ManyToManyField(help_text='Permissions granted by this role', related_name='roles', through='rbac.RolePermission', to='rbac.permission'),
        ),
        migrations.AddField(
            model_name='user',
            name='roles',
            field=models.ManyToManyField(help_text='Roles assigned to this user', related_name='users', through='rbac.UserRole', through_fields=('user', 'role'), to='rbac.role'),
        ),
    ]
