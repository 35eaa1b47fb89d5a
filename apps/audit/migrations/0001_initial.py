# Initial audit log schema

import uuid

import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='AuditLogEntry',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('user_id', models.UUIDField(blank=True, db_index=True, help_text='Acting user (null for anonymous attempts)', null=True)),
                ('user_name', models.CharField(blank=True, default='Anonymous', help_text='Name of the acting user at the time of the request', max_length=150)),
                ('action', models.CharField(db_index=True, help_text="Action label in 'resource:verb' form (e.g., 'roles:create')", max_length=100)),
                ('resource', models.CharField(db_index=True, help_text='Request path acted upon', max_length=500)),
                ('resource_type', models.CharField(choices=[('task', 'Task'), ('user', 'User'), ('role', 'Role'), ('permission', 'Permission'), ('audit', 'Audit'), ('report', 'Report'), ('system', 'System'), ('other', 'Other')], db_index=True, default='other', max_length=20)),
                ('status', models.CharField(choices=[('success', 'Success'), ('error', 'Error')], db_index=True, max_length=10)),
                ('changes', models.JSONField(blank=True, default=dict, help_text="Field changes rendered as 'old → new'")),
                ('error_message', models.TextField(blank=True, default='')),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('user_agent', models.TextField(blank=True, default='')),
                ('method', models.CharField(blank=True, default='', max_length=10)),
                ('request_id', models.CharField(blank=True, db_index=True, default='', help_text='Request ID for tracing', max_length=64)),
                ('timestamp', models.DateTimeField(db_index=True, default=django.utils.timezone.now, help_text='When the entry was written')),
            ],
            options={
                'db_table': 'audit_log_entries',
                'ordering': ['-timestamp'],
                'indexes': [
                    models.Index(fields=['user_id', '-timestamp'], name='audit_user_ts_idx'),
                    models.Index(fields=['action', '-timestamp'], name='audit_action_ts_idx'),
                    models.Index(fields=['status', '-timestamp'], name='audit_status_ts_idx'),
                ],
            },
        ),
    ]
