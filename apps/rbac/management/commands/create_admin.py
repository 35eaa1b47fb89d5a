"""
Management command to create an admin account or promote an existing user.
"""
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from apps.rbac.models import User, Role, UserRole


class Command(BaseCommand):
    help = 'Create an admin user, or grant the admin role to an existing user'

    def add_arguments(self, parser):
        parser.add_argument(
            '--email',
            type=str,
            required=True,
            help='User email address',
        )
        parser.add_argument(
            '--password',
            type=str,
            help='Password for a new user (required when the user does not exist)',
        )
        parser.add_argument(
            '--name',
            type=str,
            default='Administrator',
            help='Display name for a new user',
        )
        parser.add_argument(
            '--superuser',
            action='store_true',
            help='Also grant Django admin site access',
        )

    @transaction.atomic
    def handle(self, *args, **options):
        email = options['email']
        password = options.get('password')

        admin_role_name = getattr(settings, 'ADMIN_ROLE_NAME', 'admin')
        admin_role = Role.objects.by_name(admin_role_name)
        if admin_role is None:
            raise CommandError(
                f"Role '{admin_role_name}' not found. Run seed_permissions and seed_roles first."
            )

        user = User.objects.by_email(email)
        if user is None:
            if not password:
                raise CommandError('--password is required when creating a new user')
            user = User.objects.create_user(
                email=email,
                password=password,
                name=options['name'],
            )
            self.stdout.write(self.style.SUCCESS(f'✓ Created user: {user.email}'))
        else:
            self.stdout.write(self.style.HTTP_INFO(f'  Found user: {user.email}'))

        if options['superuser'] and not user.is_superuser:
            user.is_superuser = True
            user.save(update_fields=['is_superuser', 'updated_at'])

        _, created = UserRole.objects.get_or_create(user=user, role=admin_role)
        if created:
            self.stdout.write(self.style.SUCCESS(f"✓ Assigned role '{admin_role.name}' to {user.email}"))
        else:
            self.stdout.write(self.style.WARNING(f"  {user.email} already has role '{admin_role.name}'"))
