"""
Management command to seed default roles.

Creates the system roles (admin, user) and the example custom roles with
their permission mappings. This command is idempotent and safe to re-run:
system roles are reconciled to their defined permission set, custom roles
are only created when missing.
"""
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from apps.rbac.models import Permission, Role
from apps.rbac.services import RoleService

ALL_PERMISSIONS = 'ALL'

TASK_PERMISSIONS = ['tasks:create', 'tasks:read', 'tasks:update', 'tasks:delete']


def default_roles():
    return {
        getattr(settings, 'ADMIN_ROLE_NAME', 'admin'): {
            'description': 'Full access to every feature',
            'permissions': ALL_PERMISSIONS,
            'is_system_role': True,
        },
        getattr(settings, 'DEFAULT_USER_ROLE', 'user'): {
            'description': 'Default role for registered users',
            'permissions': TASK_PERMISSIONS,
            'is_system_role': True,
        },
        'viewer': {
            'description': 'Read-only access to tasks',
            'permissions': ['tasks:read'],
            'is_system_role': False,
        },
        'editor': {
            'description': 'Create and edit tasks',
            'permissions': TASK_PERMISSIONS,
            'is_system_role': False,
        },
        'moderator': {
            'description': 'Moderate tasks and view users',
            'permissions': ['tasks:read', 'tasks:update', 'tasks:delete', 'users:read'],
            'is_system_role': False,
        },
        'auditor': {
            'description': 'Review audit logs and reports',
            'permissions': ['audit:read', 'reports:view'],
            'is_system_role': False,
        },
    }


class Command(BaseCommand):
    help = 'Seed default roles (idempotent)'

    @transaction.atomic
    def handle(self, *args, **options):
        if not Permission.objects.exists():
            raise CommandError('No permissions found. Run seed_permissions first.')

        self.stdout.write('Seeding default roles...\n')

        for role_name, role_data in default_roles().items():
            permissions = self._resolve(role_name, role_data['permissions'])

            role, created = Role.objects.get_or_create(
                name=role_name,
                defaults={
                    'description': role_data['description'],
                    'is_system_role': role_data['is_system_role'],
                }
            )

            if created:
                RoleService.set_permissions(role, permissions)
                self.stdout.write(
                    self.style.SUCCESS(f'✓ Created role: {role.name} ({len(permissions)} permissions)')
                )
            elif role.is_system_role:
                before = set(role.permission_names())
                RoleService.set_permissions(role, permissions)
                after = set(role.permission_names())

                added = sorted(after - before)
                removed = sorted(before - after)
                if added or removed:
                    self.stdout.write(
                        self.style.WARNING(
                            f'↻ Reconciled role: {role.name} (+{len(added)} / -{len(removed)})'
                        )
                    )
                else:
                    self.stdout.write(self.style.HTTP_INFO(f'  Exists: {role.name}'))
            else:
                self.stdout.write(self.style.HTTP_INFO(f'  Exists: {role.name} (custom, left unchanged)'))

        self.stdout.write(self.style.SUCCESS(f'\n✓ Roles seeded: {Role.objects.count()} total'))

    def _resolve(self, role_name, wanted):
        if wanted == ALL_PERMISSIONS:
            return list(Permission.objects.all())

        permissions = list(Permission.objects.filter(name__in=wanted))
        missing = sorted(set(wanted) - {p.name for p in permissions})
        if missing:
            raise CommandError(
                f"Role '{role_name}' references missing permissions: {', '.join(missing)}. "
                f"Run seed_permissions first."
            )
        return permissions
