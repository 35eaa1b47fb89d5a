"""
Management command to seed system permissions.

Creates every platform-defined Permission record. This command is
idempotent and safe to re-run: existing permissions are updated in place
and never duplicated.
"""
from django.core.management.base import BaseCommand
from django.db import transaction
from apps.rbac.models import Permission


class Command(BaseCommand):
    help = 'Seed system permissions (idempotent)'

    SYSTEM_PERMISSIONS = [
        # Tasks
        {'name': 'tasks:create', 'description': 'Create tasks', 'category': 'tasks'},
        {'name': 'tasks:read', 'description': 'View own tasks', 'category': 'tasks'},
        {'name': 'tasks:update', 'description': 'Update own tasks', 'category': 'tasks'},
        {'name': 'tasks:delete', 'description': 'Delete own tasks', 'category': 'tasks'},

        # Users
        {'name': 'users:create', 'description': 'Create user accounts', 'category': 'users'},
        {'name': 'users:read', 'description': 'View user accounts and their permissions', 'category': 'users'},
        {'name': 'users:update', 'description': 'Update user accounts', 'category': 'users'},
        {'name': 'users:delete', 'description': 'Delete user accounts', 'category': 'users'},
        {'name': 'users:manage', 'description': 'Assign and remove user roles', 'category': 'users'},

        # Roles
        {'name': 'roles:create', 'description': 'Create roles', 'category': 'roles'},
        {'name': 'roles:read', 'description': 'View roles', 'category': 'roles'},
        {'name': 'roles:update', 'description': 'Update roles', 'category': 'roles'},
        {'name': 'roles:delete', 'description': 'Delete roles', 'category': 'roles'},
        {'name': 'roles:manage', 'description': 'Manage roles and their permissions', 'category': 'roles'},

        # Permissions
        {'name': 'permissions:create', 'description': 'Create permissions', 'category': 'permissions'},
        {'name': 'permissions:read', 'description': 'View permissions', 'category': 'permissions'},
        {'name': 'permissions:update', 'description': 'Update permissions', 'category': 'permissions'},
        {'name': 'permissions:delete', 'description': 'Delete permissions', 'category': 'permissions'},
        {'name': 'permissions:manage', 'description': 'Manage the permission catalog', 'category': 'permissions'},

        # Audit
        {'name': 'audit:read', 'description': 'View audit logs and statistics', 'category': 'audit'},
        {'name': 'audit:export', 'description': 'Export audit logs', 'category': 'audit'},

        # Reports
        {'name': 'reports:view', 'description': 'View reports', 'category': 'reports'},
        {'name': 'reports:export', 'description': 'Export reports', 'category': 'reports'},
        {'name': 'reports:generate', 'description': 'Generate reports', 'category': 'reports'},

        # System
        {'name': 'system:settings', 'description': 'Change system settings', 'category': 'system'},
        {'name': 'system:monitor', 'description': 'Monitor system health', 'category': 'system'},
    ]

    @transaction.atomic
    def handle(self, *args, **options):
        """Create or update all system permissions."""
        created_count = 0
        updated_count = 0

        self.stdout.write('Seeding system permissions...\n')

        for perm_data in self.SYSTEM_PERMISSIONS:
            permission, created = Permission.objects.get_or_create(
                name=perm_data['name'],
                defaults={
                    'description': perm_data['description'],
                    'category': perm_data['category'],
                    'is_system_permission': True,
                }
            )

            if created:
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f'✓ Created: {permission.name}'))
                continue

            changed = []
            if permission.description != perm_data['description']:
                permission.description = perm_data['description']
                changed.append('description')
            if permission.category != perm_data['category']:
                permission.category = perm_data['category']
                changed.append('category')

            if permission.is_system_permission:
                if changed:
                    permission.save(update_fields=changed + ['updated_at'])
                    updated_count += 1
                    self.stdout.write(self.style.WARNING(f'↻ Updated: {permission.name}'))
                else:
                    self.stdout.write(self.style.HTTP_INFO(f'  Exists: {permission.name}'))
            else:
                # A custom permission already took a system name; leave it alone.
                self.stdout.write(
                    self.style.ERROR(f'✗ Skipped: {permission.name} exists as a custom permission')
                )

        unchanged = len(self.SYSTEM_PERMISSIONS) - created_count - updated_count
        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {created_count} created, {updated_count} updated, '
                f'{unchanged} unchanged'
            )
        )

        if options.get('verbosity', 1) > 1:
            self.stdout.write('\n' + '=' * 70)
            self.stdout.write('Permissions Summary by Category:')
            self.stdout.write('=' * 70)
            for category in Permission.objects.get_categories():
                self.stdout.write(f'\n{category.upper()}:')
                for perm in Permission.objects.by_category(category).order_by('name'):
                    self.stdout.write(f'  • {perm.name:<25} {perm.description}')

        self.stdout.write(f'\nTotal permissions: {Permission.objects.count()}')
